"""
Pytest configuration and fixtures.
"""

import json
import os
import sys
from typing import Optional

import httpx
import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.services.encoder import (  # noqa: E402
    BitrateTier,
    CompressionResult,
    EncoderAdapter,
    EncoderUnavailable,
    EncodingFailure,
)
from app.services.storage_client import StorageFailure  # noqa: E402


class FakeStorage:
    """In-memory storage client that can fail a set number of uploads."""

    base_url = "https://test-bucket.s3.us-east-1.amazonaws.com"

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.put_calls: list[dict] = []
        self.signed_calls: list[dict] = []
        self.objects: dict[str, bytes] = {}

    def put(self, key, body, content_type, content_disposition=None, metadata=None):
        self.put_calls.append(
            {
                "key": key,
                "content_type": content_type,
                "content_disposition": content_disposition,
                "metadata": metadata,
            }
        )
        if len(self.put_calls) <= self.fail_times:
            raise StorageFailure(f"simulated failure #{len(self.put_calls)}")
        self.objects[key] = body
        return self.object_url(key)

    def signed_url(self, key, expires_in, content_disposition=None):
        self.signed_calls.append(
            {"key": key, "expires_in": expires_in, "content_disposition": content_disposition}
        )
        url = f"{self.object_url(key)}?X-Amz-Expires={expires_in}"
        if content_disposition:
            url += "&response-content-disposition=attachment"
        return url

    def object_url(self, key):
        return f"{self.base_url}/{key}"


class FakeEncoder(EncoderAdapter):
    """Encoder that writes dummy files instead of running ffmpeg."""

    def __init__(
        self,
        available: bool = True,
        compressed_size: int = 100,
        compress_error: Optional[Exception] = None,
        audio_ok: bool = True,
        segment_sizes: Optional[list[int]] = None,
        source_duration: float = 30.0,
    ):
        super().__init__()
        self.available = available
        self.compressed_size = compressed_size
        self.compress_error = compress_error
        self.audio_ok = audio_ok
        self.segment_sizes = list(segment_sizes or [])
        self.source_duration = source_duration
        self.transcodes: list[tuple[float, float, BitrateTier]] = []

    async def ensure_available(self) -> None:
        if not self.available:
            raise EncoderUnavailable("FFmpeg is not available: not installed")

    async def compress(self, input_path, output_path):
        if self.compress_error is not None:
            raise self.compress_error
        with open(output_path, "wb") as f:
            f.write(b"c" * self.compressed_size)
        input_size = os.path.getsize(input_path)
        return CompressionResult(
            output_path=output_path,
            input_size_bytes=input_size,
            output_size_bytes=self.compressed_size,
            use_original=self.compressed_size > input_size,
        )

    async def extract_audio(self, input_path, output_path):
        if not self.audio_ok:
            return None
        with open(output_path, "wb") as f:
            f.write(b"mp3")
        return output_path

    async def transcode_segment(self, input_path, output_path, start_seconds, duration_seconds, tier=BitrateTier.NORMAL):
        self.transcodes.append((start_seconds, duration_seconds, tier))
        size = self.segment_sizes.pop(0) if self.segment_sizes else 1024
        with open(output_path, "wb") as f:
            f.write(b"s" * size)
        return size

    async def probe_duration(self, video_path):
        if os.path.basename(video_path).startswith("story-part-"):
            raise EncodingFailure("no duration in dummy segment")
        return self.source_duration


class FakeDownloader:
    """Downloader that writes a fixed payload or raises."""

    def __init__(self, content: bytes = b"v" * 2048, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.urls: list[str] = []

    async def download(self, url, output_path):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        with open(output_path, "wb") as f:
            f.write(self.content)
        return len(self.content)


class WebhookRecorder:
    """httpx.MockTransport handler that records JSON posts."""

    def __init__(self, status_codes: Optional[list[int]] = None):
        self.status_codes = list(status_codes or [])
        self.requests: list[tuple[str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((str(request.url), json.loads(request.content)))
        status_code = self.status_codes.pop(0) if self.status_codes else 200
        return httpx.Response(status_code, json={"ok": status_code < 300})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def payloads_for(self, url: str) -> list[dict]:
        return [payload for request_url, payload in self.requests if request_url == url]


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def webhook_recorder():
    return WebhookRecorder()


@pytest.fixture
def workspace_root(tmp_path):
    """Isolated root for job workspaces."""
    root = tmp_path / "workspaces"
    root.mkdir()
    return str(root)


@pytest.fixture
def make_encoder():
    """Factory for FakeEncoder instances."""
    return FakeEncoder


@pytest.fixture
def make_downloader():
    """Factory for FakeDownloader instances."""
    return FakeDownloader


@pytest.fixture
def make_storage():
    """Factory for FakeStorage instances."""
    return FakeStorage


@pytest.fixture
def make_webhook_recorder():
    """Factory for WebhookRecorder instances."""
    return WebhookRecorder
