"""
FastAPI application entry point for the story media worker.

The worker accepts media jobs over HTTP, acknowledges them immediately and
processes them in the background:
1. Uploads: web-optimized MP4 compression + MP3 extraction
2. Stories: 9:16 segments of 3-60 seconds from a remote video
"""

import logging
import shutil
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.routers import health, story, upload
from app.services.media_pipeline import build_media_pipeline

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Builds the media pipeline on startup and drains running jobs on shutdown.
    """
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} ({settings.environment})...")

    if settings.dev_mode:
        logger.info("Development mode: storage uploads are simulated")

    pipeline = build_media_pipeline(settings)

    # Store in app state for dependency injection
    app.state.media_pipeline = pipeline

    # Verify external tools
    _verify_external_tools(settings.ffmpeg_path, settings.ffprobe_path)

    logger.info(f"{settings.app_name} ready to accept requests on port {settings.port}")

    yield

    # Let in-flight jobs reach their terminal notification
    logger.info(f"Shutting down, waiting for {pipeline.active_jobs} active job(s)...")
    await pipeline.wait_idle()
    logger.info("Shutdown complete")


def _verify_external_tools(ffmpeg_path: str, ffprobe_path: str):
    """Verify that required external tools are available."""
    tools = {
        ffmpeg_path: "FFmpeg for compression and segmenting",
        ffprobe_path: "FFprobe for duration probing",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - jobs will fail until it is installed")


# Create FastAPI application
app = FastAPI(
    title="Story Media Worker",
    description="""
Background media processing for uploads and stories.

## Usage

1. Upload a video: `POST /api/upload` (multipart: `arquivo`, `id_trabalho`)
2. Split a remote video into stories: `POST /api/story` (`videoUrl`, `profileId`)
3. Refresh expired links: `POST /api/generate-download-url` (`s3Url`, `filename`)

Results are delivered to the configured webhooks, never in the response.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration of each request."""
    start_time = time.time()
    response = await call_next(request)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({(time.time() - start_time) * 1000:.0f} ms)"
    )
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc)},
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(upload.router, tags=["Upload"])
app.include_router(story.router, tags=["Story"])


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port)
