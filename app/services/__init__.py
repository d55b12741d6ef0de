"""
Services for the media worker.

Includes:
- Encoding services (ffmpeg adapter, story segmentation)
- Storage services (S3 client, artifact publisher)
- Delivery services (notifier, remote video download)
- The background media pipeline that ties them together
"""

from app.services.artifact_publisher import ArtifactPublisher, StoredArtifact
from app.services.encoder import EncoderAdapter
from app.services.media_pipeline import MediaJob, MediaPipeline, build_media_pipeline
from app.services.notifier import NotificationFields, Notifier
from app.services.segmentation import SegmentationPlanner, plan_segments
from app.services.storage_client import S3StorageClient, SimulatedStorageClient
from app.services.video_downloader import VideoDownloaderService
from app.services.workspace import WorkspaceManager

__all__ = [
    # Encoding
    "EncoderAdapter",
    "SegmentationPlanner",
    "plan_segments",
    # Storage
    "S3StorageClient",
    "SimulatedStorageClient",
    "ArtifactPublisher",
    "StoredArtifact",
    # Delivery
    "Notifier",
    "NotificationFields",
    "VideoDownloaderService",
    # Orchestration
    "WorkspaceManager",
    "MediaJob",
    "MediaPipeline",
    "build_media_pipeline",
]
