"""
Response schemas for the media API.

Field names are camelCase because existing clients consume them as-is.
"""

from pydantic import BaseModel, Field


class AcknowledgmentResponse(BaseModel):
    """Immediate reply to an accepted job."""

    success: bool = True
    message: str
    correlationId: str = Field(..., description="id_trabalho or profileId of the accepted job")


class DownloadUrlResponse(BaseModel):
    """Freshly signed URLs for an existing object."""

    success: bool = True
    downloadUrl: str
    viewUrl: str
    expiresIn: int = Field(..., description="URL validity in seconds")
    filename: str


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str = "ok"
    timestamp: str
