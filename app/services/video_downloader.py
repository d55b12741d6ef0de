"""
Video Downloader Service - Fetches remote source videos for story jobs.
"""

import logging
import os

import httpx

logger = logging.getLogger(__name__)


class VideoDownloaderService:
    """Streams a remote video to a local file."""

    def __init__(
        self,
        timeout_seconds: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout_seconds
        self._transport = transport

    async def download(self, url: str, output_path: str) -> int:
        """
        Download a video from a direct URL.

        Args:
            url: Remote video URL
            output_path: Destination file path

        Returns:
            Downloaded size in bytes

        Raises:
            VideoDownloadError: If the request fails or nothing was written
        """
        logger.info(f"Downloading video from: {url[:200]}")
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()

                    with open(output_path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
        except httpx.HTTPError as e:
            raise VideoDownloadError(f"Failed to download video: {e}") from e

        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            raise VideoDownloadError(f"Download completed but file is empty: {output_path}")

        file_size = os.path.getsize(output_path)
        logger.info(f"Video downloaded: {output_path} ({file_size / 1024 / 1024:.1f} MB)")
        return file_size


class VideoDownloadError(Exception):
    """Exception raised when video download fails."""
    pass
