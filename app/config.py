"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. Encoding limits, retry
policy and URL expiry are hardcoded for consistency and simplicity.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All processing settings are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "story-media-worker"
    environment: str = "production"
    log_level: str = "INFO"
    port: int = 3000

    # Replaces real S3 calls with simulated URLs (implied by environment=development)
    simulate_storage: bool = False

    # AWS S3
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_s3_bucket: str = "media-uploads"

    # Completion notification for single-file uploads
    notification_endpoint: Optional[str] = None
    notification_file_url_field: str = "fileUrl"
    notification_id_field: str = "idTrabalho"
    notification_view_url_field: str = "link_video_editado_view"

    # Failure reporting and story delivery
    error_webhook_url: Optional[str] = None
    story_webhook_url: Optional[str] = None

    # External encoder binaries
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def dev_mode(self) -> bool:
        return self.simulate_storage or self.environment.lower() == "development"

    @property
    def workspace_root(self) -> Optional[str]:
        return None  # System temp directory

    # Upload limits
    @property
    def max_upload_bytes(self) -> int:
        return 100 * 1024 * 1024

    # Encoder timeouts
    @property
    def compression_timeout_seconds(self) -> float:
        return 10 * 60

    @property
    def audio_extraction_timeout_seconds(self) -> float:
        return 5 * 60

    @property
    def segment_timeout_seconds(self) -> float:
        return 5 * 60

    # Story segmentation
    @property
    def max_segment_duration_seconds(self) -> float:
        return 60.0

    @property
    def min_segment_duration_seconds(self) -> float:
        return 3.0

    @property
    def max_segment_bytes(self) -> int:
        return 100 * 1024 * 1024

    # Remote downloads
    @property
    def download_timeout_seconds(self) -> float:
        return 300.0

    # Storage
    @property
    def upload_max_attempts(self) -> int:
        return 3

    @property
    def retry_delay_seconds(self) -> float:
        return 2.0

    @property
    def download_url_expiry_seconds(self) -> int:
        return 7 * 24 * 3600

    @property
    def regenerated_url_expiry_seconds(self) -> int:
        return 3600

    # Notifications
    @property
    def notification_timeout_seconds(self) -> float:
        return 10.0

    @property
    def story_webhook_timeout_seconds(self) -> float:
        return 30.0

    @property
    def notification_max_attempts(self) -> int:
        return 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
