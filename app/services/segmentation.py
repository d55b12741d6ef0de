"""
Segmentation Planner - Splits a source video into story-sized vertical segments.

Story platforms accept clips between 3 and 60 seconds and under 100 MB.
The plan itself is a pure function of the source duration; producing the
segments drives the encoder and applies the size-budget retry.
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Optional

from app.services.encoder import BitrateTier, EncoderAdapter, EncoderError

logger = logging.getLogger(__name__)


DEFAULT_MAX_SEGMENT_SECONDS = 60.0
DEFAULT_MIN_SEGMENT_SECONDS = 3.0
DEFAULT_MAX_SEGMENT_BYTES = 100 * 1024 * 1024


@dataclass(frozen=True)
class SegmentWindow:
    """One planned time window of the source video."""

    index: int  # 1-based position in the final output
    start_seconds: float
    duration_seconds: float
    force_lower_bitrate: bool = False


@dataclass
class SegmentArtifact:
    """A transcoded story segment ready for publishing."""

    path: str
    filename: str
    file_size_bytes: int
    duration_seconds: float
    tier: BitrateTier
    mime_type: str = "video/mp4"


def segment_filename(index: int) -> str:
    """Output filename for the 1-based segment index."""
    return f"story-part-{index:03d}.mp4"


def plan_segments(
    total_duration: float,
    max_segment_seconds: float = DEFAULT_MAX_SEGMENT_SECONDS,
    min_segment_seconds: float = DEFAULT_MIN_SEGMENT_SECONDS,
    fits_single: bool = False,
    source_bytes_per_second: Optional[float] = None,
    max_segment_bytes: int = DEFAULT_MAX_SEGMENT_BYTES,
) -> list[SegmentWindow]:
    """
    Compute the segment boundaries for a source video.

    Args:
        total_duration: Source duration in seconds
        max_segment_seconds: Longest allowed segment
        min_segment_seconds: Shortest viable segment; shorter tails are dropped
        fits_single: Whether the source file already fits the byte budget
        source_bytes_per_second: Average source density; windows whose share of
            the source already exceeds max_segment_bytes start at the reduced tier
        max_segment_bytes: Byte budget per segment

    Returns:
        Ordered windows; empty when nothing reaches the minimum duration
    """
    if total_duration <= 0:
        return []

    def over_budget(duration: float) -> bool:
        if source_bytes_per_second is None:
            return False
        return source_bytes_per_second * duration > max_segment_bytes

    # Same single window the loop below yields for any total <= max_segment_seconds
    if fits_single and min_segment_seconds <= total_duration <= max_segment_seconds:
        return [
            SegmentWindow(
                index=1,
                start_seconds=0.0,
                duration_seconds=total_duration,
                force_lower_bitrate=over_budget(total_duration),
            )
        ]

    windows = []
    count = math.ceil(total_duration / max_segment_seconds)
    for i in range(count):
        start = i * max_segment_seconds
        duration = min(max_segment_seconds, total_duration - start)
        if duration < min_segment_seconds:
            logger.info(f"Dropping segment {i + 1}: {duration:.2f}s is below the {min_segment_seconds}s minimum")
            continue
        windows.append(
            SegmentWindow(
                index=len(windows) + 1,
                start_seconds=start,
                duration_seconds=duration,
                force_lower_bitrate=over_budget(duration),
            )
        )

    return windows


class SegmentationPlanner:
    """Plans and transcodes the story segments for one source video."""

    def __init__(
        self,
        encoder: EncoderAdapter,
        max_segment_seconds: float = DEFAULT_MAX_SEGMENT_SECONDS,
        min_segment_seconds: float = DEFAULT_MIN_SEGMENT_SECONDS,
        max_segment_bytes: int = DEFAULT_MAX_SEGMENT_BYTES,
    ):
        self.encoder = encoder
        self.max_segment_seconds = max_segment_seconds
        self.min_segment_seconds = min_segment_seconds
        self.max_segment_bytes = max_segment_bytes

    async def produce_segments(
        self,
        source_path: str,
        output_dir: str,
        total_duration: Optional[float] = None,
    ) -> list[SegmentArtifact]:
        """
        Transcode the source into story segments.

        Each window is encoded at the normal tier, or straight at the reduced
        tier when its share of the source already exceeds the byte budget.
        A normal-tier output over the budget is re-encoded once at the reduced
        tier, and that result is kept even if it is still too large.

        Raises:
            NoViableSegmentsError: If no window reaches the minimum duration
            EncoderError: If a transcode fails or times out
        """
        if total_duration is None:
            total_duration = await self.encoder.probe_duration(source_path)
        source_size = os.path.getsize(source_path)
        logger.info(f"Source duration: {total_duration:.2f}s, size: {source_size / 1024 / 1024:.2f} MB")

        plan = plan_segments(
            total_duration,
            max_segment_seconds=self.max_segment_seconds,
            min_segment_seconds=self.min_segment_seconds,
            fits_single=source_size <= self.max_segment_bytes,
            source_bytes_per_second=source_size / total_duration if total_duration > 0 else None,
            max_segment_bytes=self.max_segment_bytes,
        )
        if not plan:
            raise NoViableSegmentsError(
                f"Video duration {total_duration:.2f}s yields no segment of at least "
                f"{self.min_segment_seconds}s"
            )

        logger.info(f"Producing {len(plan)} segment(s)")
        os.makedirs(output_dir, exist_ok=True)

        artifacts = []
        for window in plan:
            artifacts.append(await self._produce_one(source_path, output_dir, window, len(plan)))
        return artifacts

    async def _produce_one(
        self,
        source_path: str,
        output_dir: str,
        window: SegmentWindow,
        total: int,
    ) -> SegmentArtifact:
        filename = segment_filename(window.index)
        output_path = os.path.join(output_dir, filename)
        tier = BitrateTier.REDUCED if window.force_lower_bitrate else BitrateTier.NORMAL

        logger.info(
            f"Segment {window.index}/{total}: {window.start_seconds:.1f}s - "
            f"{window.start_seconds + window.duration_seconds:.1f}s"
        )
        if window.force_lower_bitrate:
            logger.info(f"Segment {window.index} exceeds the byte budget at source bitrate; encoding at reduced tier")
        size = await self.encoder.transcode_segment(
            source_path, output_path, window.start_seconds, window.duration_seconds, tier
        )

        if size > self.max_segment_bytes and tier is BitrateTier.NORMAL:
            logger.warning(
                f"Segment {window.index} is {size / 1024 / 1024:.2f} MB, over the "
                f"{self.max_segment_bytes / 1024 / 1024:.0f} MB budget; re-encoding at reduced bitrate"
            )
            tier = BitrateTier.REDUCED
            size = await self.encoder.transcode_segment(
                source_path, output_path, window.start_seconds, window.duration_seconds, tier
            )
            logger.info(f"Segment {window.index} reduced to {size / 1024 / 1024:.2f} MB")

        try:
            duration = await self.encoder.probe_duration(output_path)
        except EncoderError as e:
            logger.warning(f"Could not probe segment {window.index}, using planned duration: {e}")
            duration = window.duration_seconds

        return SegmentArtifact(
            path=output_path,
            filename=filename,
            file_size_bytes=size,
            duration_seconds=duration,
            tier=tier,
        )


class NoViableSegmentsError(Exception):
    """Exception raised when a source is too short for any story segment."""
    pass
