"""
Upload validation for incoming media files.
"""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


VIDEO_EXTENSIONS = frozenset(
    {".mp4", ".avi", ".mov", ".mkv", ".wmv", ".flv", ".webm", ".m4v", ".3gp"}
)

DEFAULT_VIDEO_MIME_TYPE = "video/mp4"


def file_stem(filename: str) -> str:
    """Filename without directories and everything from the first dot on."""
    return os.path.basename(filename).split(".")[0] or "video"


def validate_video_upload(
    filename: Optional[str],
    content_type: Optional[str],
    size_bytes: int,
    max_bytes: int,
) -> str:
    """
    Validate an uploaded file and return its effective MIME type.

    A file is accepted when either its declared type is video/* or its
    extension is a known video extension. A recognized extension with a
    non-video declared type is normalized to video/mp4.

    Raises:
        ValidationError: 400 for a missing or non-video file, 413 when too large
    """
    if not filename or size_bytes <= 0:
        raise ValidationError('No file uploaded. Field name must be "arquivo".')

    if size_bytes > max_bytes:
        raise ValidationError(
            f"File too large: {size_bytes} bytes exceeds the {max_bytes // (1024 * 1024)} MB limit",
            status_code=413,
        )

    mime_type = (content_type or "").lower()
    ext = os.path.splitext(filename)[1].lower()
    is_video_mime = mime_type.startswith("video/")
    is_video_ext = ext in VIDEO_EXTENSIONS

    logger.info(f"File received: {filename}, MIME type: {content_type}, extension: {ext or 'none'}")

    if not is_video_mime and not is_video_ext:
        raise ValidationError("Only video files are allowed")

    if is_video_ext and not is_video_mime:
        logger.info(f"Normalizing MIME type of {filename} to {DEFAULT_VIDEO_MIME_TYPE}")
        return DEFAULT_VIDEO_MIME_TYPE

    return mime_type


class ValidationError(Exception):
    """Exception raised when a request is rejected before processing."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
