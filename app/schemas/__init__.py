"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import DownloadUrlRequest, StoryRequest
from app.schemas.responses import (
    AcknowledgmentResponse,
    DownloadUrlResponse,
    HealthResponse,
)

__all__ = [
    "StoryRequest",
    "DownloadUrlRequest",
    "AcknowledgmentResponse",
    "DownloadUrlResponse",
    "HealthResponse",
]
