"""
Encoder Adapter - FFmpeg/FFprobe invocations with hard timeouts.

Wraps three encoding operations used by the media pipeline:
1. Web-optimized MP4 compression
2. MP3 audio extraction
3. 9:16 vertical segment transcoding for stories
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


# Vertical story canvas
TARGET_WIDTH = 1080
TARGET_HEIGHT = 1920

VERTICAL_FILTER = (
    f"scale={TARGET_WIDTH}:{TARGET_HEIGHT}:force_original_aspect_ratio=decrease,"
    f"pad={TARGET_WIDTH}:{TARGET_HEIGHT}:(ow-iw)/2:(oh-ih)/2,setsar=1"
)

# Seconds allowed for the `ffmpeg -version` probe
PROBE_TIMEOUT_SECONDS = 15.0


class BitrateTier(str, Enum):
    """Bitrate tiers for segment transcoding."""

    NORMAL = "normal"
    REDUCED = "reduced"

    @property
    def video_bitrate(self) -> str:
        return "4000k" if self is BitrateTier.NORMAL else "2500k"

    @property
    def audio_bitrate(self) -> str:
        return "128k" if self is BitrateTier.NORMAL else "96k"

    @property
    def buffer_size(self) -> str:
        return "8000k" if self is BitrateTier.NORMAL else "5000k"


@dataclass
class CompressionResult:
    """Result of a compression run."""

    output_path: str
    input_size_bytes: int
    output_size_bytes: int
    use_original: bool


def build_compress_args(input_path: str, output_path: str) -> list[str]:
    """FFmpeg options for the web-optimized MP4 re-encode."""
    return [
        "-y",
        "-i", input_path,
        "-c:v", "libx264",
        "-crf", "28",
        "-preset", "fast",
        "-c:a", "aac",
        "-b:a", "128k",
        "-movflags", "+faststart",
        "-f", "mp4",
        output_path,
    ]


def build_extract_audio_args(input_path: str, output_path: str) -> list[str]:
    """FFmpeg options for demuxing a standalone MP3 stream."""
    return [
        "-y",
        "-i", input_path,
        "-vn",
        "-c:a", "libmp3lame",
        "-q:a", "2",
        "-f", "mp3",
        output_path,
    ]


def build_segment_args(
    input_path: str,
    output_path: str,
    start_seconds: float,
    duration_seconds: float,
    tier: BitrateTier = BitrateTier.NORMAL,
) -> list[str]:
    """FFmpeg options for one vertical story segment."""
    return [
        "-y",
        "-ss", f"{start_seconds:.3f}",
        "-i", input_path,
        "-t", f"{duration_seconds:.3f}",
        "-c:v", "libx264",
        "-preset", "medium",
        "-b:v", tier.video_bitrate,
        "-maxrate", tier.video_bitrate,
        "-bufsize", tier.buffer_size,
        "-vf", VERTICAL_FILTER,
        "-c:a", "aac",
        "-b:a", tier.audio_bitrate,
        "-ar", "44100",
        "-movflags", "+faststart",
        "-pix_fmt", "yuv420p",
        output_path,
    ]


class EncoderAdapter:
    """
    Runs the external encoding engine as isolated subprocesses.

    Every invocation carries a wall-clock timeout after which the process
    is killed and EncodingTimeout is raised. A non-zero exit raises
    EncodingFailure with the tail of stderr.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        compression_timeout: float = 600.0,
        extraction_timeout: float = 300.0,
        segment_timeout: float = 300.0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.compression_timeout = compression_timeout
        self.extraction_timeout = extraction_timeout
        self.segment_timeout = segment_timeout
        self._available = False

    async def ensure_available(self) -> None:
        """
        Verify the encoder is installed with a `-version` probe.

        Raises:
            EncoderUnavailable: If the binary is missing or the probe fails
        """
        if self._available:
            return

        try:
            await self._run([self.ffmpeg_path, "-version"], PROBE_TIMEOUT_SECONDS, "version probe")
        except EncoderError as e:
            raise EncoderUnavailable(f"FFmpeg is not available: {e}") from e

        self._available = True
        logger.info("FFmpeg available")

    async def compress(self, input_path: str, output_path: str) -> CompressionResult:
        """
        Re-encode a video to a web-optimized MP4.

        The result flags use_original when the output came out larger than
        the input, so callers never publish an inflated file.
        """
        await self.ensure_available()

        input_size = os.path.getsize(input_path)
        logger.info(f"Compressing {os.path.basename(input_path)} ({input_size} bytes)")

        cmd = [self.ffmpeg_path, *build_compress_args(input_path, output_path)]
        await self._run(cmd, self.compression_timeout, "compression")

        if not os.path.isfile(output_path):
            raise EncodingFailure("Compression finished but output file was not created")

        output_size = os.path.getsize(output_path)
        use_original = output_size > input_size
        if use_original:
            logger.info(
                f"Compressed output ({output_size} bytes) is larger than the original "
                f"({input_size} bytes), keeping the original"
            )
        else:
            logger.info(f"Compressed {input_size} -> {output_size} bytes")

        return CompressionResult(
            output_path=output_path,
            input_size_bytes=input_size,
            output_size_bytes=output_size,
            use_original=use_original,
        )

    async def extract_audio(self, input_path: str, output_path: str) -> Optional[str]:
        """
        Extract an MP3 track from a video.

        Audio is an optional artifact: any encoder error is logged and
        reported as None instead of raising.
        """
        try:
            await self.ensure_available()
            cmd = [self.ffmpeg_path, *build_extract_audio_args(input_path, output_path)]
            await self._run(cmd, self.extraction_timeout, "audio extraction")
        except EncoderError as e:
            logger.warning(f"Audio extraction failed: {e}")
            return None

        if not os.path.isfile(output_path):
            logger.warning("Audio extraction finished but MP3 file was not created")
            return None

        logger.info(f"Extracted MP3 ({os.path.getsize(output_path)} bytes)")
        return output_path

    async def transcode_segment(
        self,
        input_path: str,
        output_path: str,
        start_seconds: float,
        duration_seconds: float,
        tier: BitrateTier = BitrateTier.NORMAL,
    ) -> int:
        """
        Transcode one time window into a vertical MP4.

        Returns:
            Size of the produced file in bytes
        """
        await self.ensure_available()

        cmd = [
            self.ffmpeg_path,
            *build_segment_args(input_path, output_path, start_seconds, duration_seconds, tier),
        ]
        await self._run(cmd, self.segment_timeout, f"segment transcode ({tier.value})")

        if not os.path.isfile(output_path):
            raise EncodingFailure(f"Segment output not created: {output_path}")

        return os.path.getsize(output_path)

    async def probe_duration(self, video_path: str) -> float:
        """Get a media file's duration in seconds using ffprobe."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            video_path,
        ]
        stdout = await self._run(cmd, PROBE_TIMEOUT_SECONDS * 2, "ffprobe")

        try:
            info = json.loads(stdout.decode("utf-8", errors="ignore"))
            return float(info["format"]["duration"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise EncodingFailure(f"Failed to parse ffprobe output: {e}") from e

    async def _run(self, cmd: list[str], timeout: float, operation: str) -> bytes:
        """Run a command, killing it if it outlives the timeout."""
        logger.debug(f"Running {operation}: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise EncoderUnavailable(f"Cannot start {cmd[0]}: {e}") from e
        except OSError as e:
            raise EncodingFailure(f"Cannot start {cmd[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                # Exited between the timeout and the kill
                pass
            await process.wait()
            raise EncodingTimeout(f"{operation} timed out after {timeout:.0f}s")

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="ignore")[-1000:] if stderr else "Unknown error"
            raise EncodingFailure(f"{operation} failed (exit {process.returncode}): {error_msg}")

        return stdout


class EncoderError(Exception):
    """Base exception for encoder failures."""
    pass


class EncoderUnavailable(EncoderError):
    """Exception raised when ffmpeg is not installed or cannot start."""
    pass


class EncodingTimeout(EncoderError):
    """Exception raised when an invocation exceeds its wall-clock budget."""
    pass


class EncodingFailure(EncoderError):
    """Exception raised when ffmpeg exits with a non-zero status."""
    pass
