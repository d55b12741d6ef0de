"""
FastAPI routers for the media worker.
"""

from app.routers import health, story, upload

__all__ = ["health", "upload", "story"]
