"""
Story API Router - Splits a remote video into story segments.
"""

import logging

from fastapi import APIRouter, Depends

from app.routers.upload import get_media_pipeline
from app.schemas.requests import StoryRequest
from app.schemas.responses import AcknowledgmentResponse
from app.services.media_pipeline import MediaJob, MediaPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post("/story", response_model=AcknowledgmentResponse)
async def process_story(
    request: StoryRequest,
    pipeline: MediaPipeline = Depends(get_media_pipeline),
) -> AcknowledgmentResponse:
    """
    Accept a story job.

    The video is downloaded, cut into vertical segments of 3-60 seconds and
    published; the segment URLs are delivered to the story webhook.
    """
    logger.info(f"Story requested for profileId {request.profileId}: {request.videoUrl[:200]}")

    pipeline.launch(MediaJob.story(request.profileId, request.videoUrl))

    return AcknowledgmentResponse(
        success=True,
        message="Story processing started",
        correlationId=request.profileId,
    )
