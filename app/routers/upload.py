"""
Upload API Router - Accepts video uploads and reissues download URLs.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from app.config import Settings, get_settings
from app.schemas.requests import DownloadUrlRequest
from app.schemas.responses import AcknowledgmentResponse, DownloadUrlResponse
from app.services.artifact_publisher import ArtifactPublisher
from app.services.media_pipeline import MediaJob, MediaPipeline
from app.services.media_validation import ValidationError, validate_video_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Dependencies
# ============================================================================


async def get_media_pipeline(request: Request) -> MediaPipeline:
    """Get the media pipeline from app state (initialized at startup)."""
    if not hasattr(request.app.state, "media_pipeline"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Media pipeline not initialized",
        )
    return request.app.state.media_pipeline


async def get_publisher(pipeline: MediaPipeline = Depends(get_media_pipeline)) -> ArtifactPublisher:
    return pipeline.publisher


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/upload", response_model=AcknowledgmentResponse)
async def upload_file(
    arquivo: Optional[UploadFile] = File(None),
    id_trabalho: Optional[str] = Form(None),
    pipeline: MediaPipeline = Depends(get_media_pipeline),
    settings: Settings = Depends(get_settings),
) -> AcknowledgmentResponse:
    """
    Accept a video upload for background processing.

    The file is compressed, its audio extracted, and both published to
    storage. The caller gets an acknowledgment immediately; the outcome
    arrives later through the completion or error webhook.
    """
    if arquivo is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No file uploaded. Field name must be "arquivo".',
        )

    if not id_trabalho:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required field: id_trabalho",
        )

    # Reject oversized files before reading them into memory when the size is known
    if arquivo.size is not None and arquivo.size > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: limit is {settings.max_upload_bytes // (1024 * 1024)} MB",
        )

    data = await arquivo.read()

    try:
        mime_type = validate_video_upload(
            arquivo.filename,
            arquivo.content_type,
            len(data),
            settings.max_upload_bytes,
        )
    except ValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    job = MediaJob.single_file(id_trabalho, data, arquivo.filename, mime_type)
    pipeline.launch(job)

    logger.info(f"Upload accepted for id_trabalho {id_trabalho}: {arquivo.filename} ({len(data)} bytes)")

    return AcknowledgmentResponse(
        success=True,
        message="File received. Processing started.",
        correlationId=id_trabalho,
    )


@router.post("/generate-download-url", response_model=DownloadUrlResponse)
async def generate_download_url(
    request: DownloadUrlRequest,
    publisher: ArtifactPublisher = Depends(get_publisher),
    settings: Settings = Depends(get_settings),
) -> DownloadUrlResponse:
    """
    Issue fresh download and view URLs for a previously published object.

    Used by clients (notably iOS) whose original signed URL has expired.
    """
    key = ArtifactPublisher.extract_key(request.s3Url)
    if not key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid S3 URL format",
        )

    expires_in = settings.regenerated_url_expiry_seconds
    try:
        download_url, view_url = await publisher.generate_access_urls(key, request.filename, expires_in)
    except Exception as e:
        logger.exception(f"Failed to generate URLs for {key}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate URLs: {e}",
        )

    return DownloadUrlResponse(
        success=True,
        downloadUrl=download_url,
        viewUrl=view_url,
        expiresIn=expires_in,
        filename=request.filename,
    )
