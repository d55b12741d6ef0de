"""
Artifact Publisher - Uploads produced media to storage with bounded retry.

A publish never fails the job: after the last attempt the publisher hands
back a clearly-marked placeholder so the pipeline can still notify the
consumer about the degraded result.
"""

import asyncio
import logging
import os
import time
import unicodedata
import uuid
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote, urlparse

from app.services.storage_client import StorageClient, StorageFailure

logger = logging.getLogger(__name__)


PLACEHOLDER_BASE_URL = "https://error-upload.s3.amazonaws.com"


@dataclass
class StoredArtifact:
    """
    A persisted artifact.

    Both URLs point at the same storage object: download_url forces an
    attachment, view_url plays inline.
    """

    download_url: str
    view_url: str
    key: Optional[str] = None
    is_placeholder: bool = False


def ascii_filename(filename: str) -> str:
    """ASCII-only fallback for a filename (accents folded, quotes dropped)."""
    folded = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    folded = "".join(ch for ch in folded if ch.isprintable() and ch not in '"\\')
    return folded.strip() or "download"


def attachment_disposition(filename: str) -> str:
    """
    Content-Disposition forcing a download (RFC 6266).

    Carries an ASCII fallback name plus the exact UTF-8 name in filename*.
    """
    return (
        f'attachment; filename="{ascii_filename(filename)}"; '
        f"filename*=UTF-8''{quote(filename, safe='')}"
    )


class ArtifactPublisher:
    """
    Publishes byte buffers to storage.

    Features:
    - Time-prefixed unique keys
    - Retries with exponential backoff (2s, 4s between 3 attempts)
    - Forced-download variant via content disposition
    - Signed download URLs (7 days by default)
    """

    def __init__(
        self,
        storage: StorageClient,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        download_url_expiry_seconds: int = 7 * 24 * 3600,
    ):
        self.storage = storage
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay_seconds
        self.download_url_expiry = download_url_expiry_seconds

    def build_key(self, filename: str) -> str:
        timestamp_ms = int(time.time() * 1000)
        return f"uploads/{timestamp_ms}-{uuid.uuid4().hex[:8]}-{os.path.basename(filename)}"

    async def publish(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        force_download: bool = False,
    ) -> StoredArtifact:
        """
        Upload a buffer and return its download and view URLs.

        Args:
            data: File contents
            filename: Original filename (used in the key and the disposition)
            mime_type: Content type stored with the object
            force_download: Store the object with an attachment disposition

        Returns:
            StoredArtifact; a placeholder if every attempt failed
        """
        key = self.build_key(filename)
        disposition = attachment_disposition(filename)
        put_kwargs = {}
        if force_download:
            put_kwargs["content_disposition"] = disposition
            put_kwargs["metadata"] = {"original-filename": quote(filename, safe="")}

        loop = asyncio.get_event_loop()

        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info(f"Upload attempt {attempt}/{self.max_attempts}: {filename}")
                view_url = await loop.run_in_executor(
                    None,
                    lambda: self.storage.put(key, data, mime_type, **put_kwargs),
                )
                download_url = await loop.run_in_executor(
                    None,
                    lambda: self.storage.signed_url(key, self.download_url_expiry, disposition),
                )
                logger.info(f"Upload succeeded: {view_url}")
                return StoredArtifact(download_url=download_url, view_url=view_url, key=key)

            except StorageFailure as e:
                logger.warning(f"Upload attempt {attempt} failed for {filename}: {e}")

            except Exception as e:
                logger.exception(f"Unexpected upload error for {filename} (attempt {attempt}): {e}")

            if attempt < self.max_attempts:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.info(f"Waiting {delay:.0f}s before next upload attempt")
                await asyncio.sleep(delay)

        logger.error(f"All {self.max_attempts} upload attempts failed for {filename}, returning placeholder")
        return self._placeholder(filename)

    def _placeholder(self, filename: str) -> StoredArtifact:
        error_url = f"{PLACEHOLDER_BASE_URL}/error-{int(time.time() * 1000)}-{os.path.basename(filename)}"
        return StoredArtifact(
            download_url=f"{error_url}?download=true",
            view_url=error_url,
            is_placeholder=True,
        )

    @staticmethod
    def extract_key(url: str) -> Optional[str]:
        """
        Recover the storage key from a previously issued URL.

        Returns None for anything that is not an absolute http(s) URL with a path.
        """
        if not url or not isinstance(url, str):
            return None
        try:
            parsed = urlparse(url.strip())
        except ValueError:
            logger.warning(f"Could not parse storage URL: {url[:100]}")
            return None

        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None

        key = unquote(parsed.path.lstrip("/"))
        return key or None

    async def generate_access_urls(
        self,
        key: str,
        filename: str,
        expires_in: int = 3600,
    ) -> tuple[str, str]:
        """
        Issue fresh signed URLs for an existing object.

        Returns:
            (download_url, view_url)
        """
        loop = asyncio.get_event_loop()
        download_url, view_url = await asyncio.gather(
            loop.run_in_executor(
                None,
                lambda: self.storage.signed_url(key, expires_in, attachment_disposition(filename)),
            ),
            loop.run_in_executor(
                None,
                lambda: self.storage.signed_url(key, expires_in),
            ),
        )
        return download_url, view_url
