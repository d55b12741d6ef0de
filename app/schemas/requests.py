"""
Request schemas for the media API.
"""

from pydantic import BaseModel, Field


class StoryRequest(BaseModel):
    """Request body for the /api/story endpoint."""

    videoUrl: str = Field(..., min_length=1, description="Direct URL of the source video")
    profileId: str = Field(..., min_length=1, description="Profile that receives the story segments")

    class Config:
        json_schema_extra = {
            "example": {
                "videoUrl": "https://example.com/videos/source.mp4",
                "profileId": "profile-123",
            }
        }


class DownloadUrlRequest(BaseModel):
    """Request body for the /api/generate-download-url endpoint."""

    s3Url: str = Field(..., min_length=1, description="Previously issued storage URL")
    filename: str = Field(..., min_length=1, description="Filename offered to the downloader")
