"""
Media Pipeline - Background orchestrator for upload and story jobs.

This service runs each accepted job to exactly one terminal notification:
1. Workspace allocation
2. Encoding (compression + audio extraction, or story segmentation)
3. Artifact publishing
4. Workspace release
5. Completion or failure notification

Jobs are fire-and-forget asyncio tasks. Nothing a job does can raise into
the event loop; every failure is reported through the notifier instead.
"""

import asyncio
import logging
import os
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from app.config import Settings
from app.services.artifact_publisher import ArtifactPublisher, StoredArtifact
from app.services.encoder import EncoderAdapter
from app.services.media_validation import file_stem
from app.services.notifier import NotificationFields, NotificationOutcome, Notifier
from app.services.segmentation import SegmentationPlanner
from app.services.storage_client import build_storage_client
from app.services.video_downloader import VideoDownloaderService
from app.services.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


AUDIO_MIME_TYPE = "audio/mpeg"
VIDEO_MIME_TYPE = "video/mp4"


class JobKind(str, Enum):
    """Kind of media job."""

    SINGLE_FILE = "single-file"
    STORY_SEGMENTS = "story-segments"

    @property
    def process_type(self) -> str:
        """Name reported in failure notifications."""
        return "upload" if self is JobKind.SINGLE_FILE else "story"


class JobStatus(str, Enum):
    """Lifecycle state of a media job."""

    ACCEPTED = "accepted"
    ACKNOWLEDGED = "acknowledged"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.PARTIALLY_FAILED, JobStatus.FAILED)


@dataclass
class MediaJob:
    """A unit of background work. Lives only in process memory."""

    job_id: str  # Caller-supplied correlation id (id_trabalho or profileId)
    kind: JobKind
    data: Optional[bytes] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    source_url: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: JobStatus = JobStatus.ACCEPTED

    @classmethod
    def single_file(cls, job_id: str, data: bytes, filename: str, mime_type: str) -> "MediaJob":
        return cls(
            job_id=job_id,
            kind=JobKind.SINGLE_FILE,
            data=data,
            filename=filename,
            mime_type=mime_type,
        )

    @classmethod
    def story(cls, profile_id: str, video_url: str) -> "MediaJob":
        return cls(job_id=profile_id, kind=JobKind.STORY_SEGMENTS, source_url=video_url)

    def failure_metadata(self) -> dict:
        if self.kind is JobKind.SINGLE_FILE:
            return {
                "id_trabalho": self.job_id,
                "originalFilename": self.filename,
                "mimetype": self.mime_type,
            }
        return {"profileId": self.job_id, "videoUrl": self.source_url}


@dataclass
class JobResult:
    """Final result of a media job."""

    job_id: str
    kind: JobKind
    status: JobStatus
    artifacts: list[StoredArtifact] = field(default_factory=list)
    audio: Optional[StoredArtifact] = None
    notification: Optional[NotificationOutcome] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    processing_time_seconds: float = 0


@dataclass
class _StageOutcome:
    """What the processing stages produced, before notification."""

    artifacts: list[StoredArtifact]
    audio: Optional[StoredArtifact] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> JobStatus:
        if self.warnings:
            return JobStatus.PARTIALLY_FAILED
        return JobStatus.SUCCEEDED


class MediaPipeline:
    """
    Orchestrates media jobs from workspace allocation to notification.

    All collaborators are injected; build_media_pipeline() wires the
    production set from settings.
    """

    def __init__(
        self,
        workspace_manager: WorkspaceManager,
        encoder: EncoderAdapter,
        segmentation: SegmentationPlanner,
        publisher: ArtifactPublisher,
        notifier: Notifier,
        downloader: VideoDownloaderService,
    ):
        self.workspace_manager = workspace_manager
        self.encoder = encoder
        self.segmentation = segmentation
        self.publisher = publisher
        self.notifier = notifier
        self.downloader = downloader

        # Strong references to running jobs; tasks remove themselves when done
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def launch(self, job: MediaJob) -> asyncio.Task:
        """
        Start a job in the background and return without waiting.

        Must be called from a running event loop.
        """
        job.status = JobStatus.ACKNOWLEDGED
        task = asyncio.create_task(self.run(job), name=f"media-job-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.info(f"Job {job.job_id} ({job.kind.value}) launched, {len(self._tasks)} active")
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Task {task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Task {task.get_name()} escaped its failure boundary: {error!r}")

    async def wait_idle(self) -> None:
        """Wait for every launched job to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, job: MediaJob) -> JobResult:
        """
        Process a job to its terminal state.

        Never raises (except on cancellation). The workspace is released
        before the terminal notification is sent.
        """
        start_time = time.time()
        job.status = JobStatus.PROCESSING
        logger.info(f"Starting {job.kind.value} job: {job.job_id}")

        try:
            with self.workspace_manager.scoped(job.job_id) as workspace:
                if job.kind is JobKind.SINGLE_FILE:
                    outcome = await self._run_single_file(job, workspace)
                else:
                    outcome = await self._run_story(job, workspace)
        except Exception as e:
            logger.exception(f"Job {job.job_id} failed: {e}")
            job.status = JobStatus.FAILED
            notification = await self._report_failure(job, e)
            return JobResult(
                job_id=job.job_id,
                kind=job.kind,
                status=JobStatus.FAILED,
                notification=notification,
                error=str(e) or type(e).__name__,
                processing_time_seconds=time.time() - start_time,
            )

        job.status = outcome.status
        notification = await self._report_success(job, outcome)
        processing_time = time.time() - start_time

        logger.info(
            f"Job {job.job_id} finished as {job.status.value} in {processing_time:.1f}s "
            f"({len(outcome.artifacts)} artifact(s), notification {notification.status.value})"
        )
        for warning in outcome.warnings:
            logger.warning(f"Job {job.job_id}: {warning}")

        return JobResult(
            job_id=job.job_id,
            kind=job.kind,
            status=job.status,
            artifacts=outcome.artifacts,
            audio=outcome.audio,
            notification=notification,
            warnings=outcome.warnings,
            processing_time_seconds=processing_time,
        )

    async def _run_single_file(self, job: MediaJob, workspace: Workspace) -> _StageOutcome:
        """Compress the upload, extract its audio and publish both."""
        await self.encoder.ensure_available()

        stem = file_stem(job.filename)
        ext = os.path.splitext(job.filename)[1].lower() or ".mp4"
        input_path = workspace.file(f"input{ext}")
        with open(input_path, "wb") as f:
            f.write(job.data)

        # Step 1: Compress
        step_start = time.time()
        video_filename = f"compressed-{stem}.mp4"
        compression = await self.encoder.compress(input_path, workspace.file(video_filename))
        logger.info(f"Video compressed in {time.time() - step_start:.1f}s")

        if compression.use_original:
            video_bytes = job.data
            video_mime = job.mime_type or VIDEO_MIME_TYPE
        else:
            video_bytes = _read_file(compression.output_path)
            video_mime = VIDEO_MIME_TYPE

        # Step 2: Publish video
        warnings = []
        video = await self.publisher.publish(video_bytes, video_filename, video_mime, force_download=True)
        if video.is_placeholder:
            warnings.append(f"Video upload failed, placeholder URL sent: {video.view_url}")

        # Step 3: Extract and publish audio (optional)
        step_start = time.time()
        audio_filename = f"audio-{stem}.mp3"
        audio_path = await self.encoder.extract_audio(input_path, workspace.file(audio_filename))

        audio = None
        if audio_path:
            logger.info(f"Audio extracted in {time.time() - step_start:.1f}s")
            audio = await self.publisher.publish(
                _read_file(audio_path), audio_filename, AUDIO_MIME_TYPE, force_download=True
            )
            if audio.is_placeholder:
                warnings.append(f"Audio upload failed, placeholder URL sent: {audio.view_url}")
        else:
            warnings.append("Audio extraction failed, audio omitted")

        return _StageOutcome(artifacts=[video], audio=audio, warnings=warnings)

    async def _run_story(self, job: MediaJob, workspace: Workspace) -> _StageOutcome:
        """Download the source, split it into story segments and publish each."""
        await self.encoder.ensure_available()

        # Step 1: Download
        source_path = workspace.file("source.mp4")
        await self.downloader.download(job.source_url, source_path)

        # Step 2: Segment
        step_start = time.time()
        segments = await self.segmentation.produce_segments(source_path, workspace.subdir("segments"))
        logger.info(f"{len(segments)} segment(s) produced in {time.time() - step_start:.1f}s")

        # Step 3: Publish in order
        stored = []
        warnings = []
        for i, segment in enumerate(segments, start=1):
            logger.info(f"Uploading segment {i}/{len(segments)}: {segment.filename}")
            artifact = await self.publisher.publish(
                _read_file(segment.path), segment.filename, segment.mime_type, force_download=False
            )
            if artifact.is_placeholder:
                warnings.append(f"Segment {segment.filename} upload failed, placeholder URL sent")
            stored.append(artifact)
            logger.info(
                f"  {segment.filename} - {segment.duration_seconds:.1f}s - "
                f"{segment.file_size_bytes / 1024 / 1024:.2f} MB - {artifact.view_url}"
            )

        return _StageOutcome(artifacts=stored, warnings=warnings)

    async def _report_success(self, job: MediaJob, outcome: _StageOutcome) -> NotificationOutcome:
        if job.kind is JobKind.SINGLE_FILE:
            return await self.notifier.notify_completed(outcome.artifacts[0], job.job_id, outcome.audio)
        return await self.notifier.notify_story_published(
            job.job_id, [artifact.view_url for artifact in outcome.artifacts]
        )

    async def _report_failure(self, job: MediaJob, error: Exception) -> NotificationOutcome:
        """Send the failure notification (and the story webhook error for stories)."""
        error_message = str(error) or type(error).__name__
        notification = await self.notifier.notify_failed(
            process_type=job.kind.process_type,
            error_message=error_message,
            error_stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            metadata=job.failure_metadata(),
        )
        if job.kind is JobKind.STORY_SEGMENTS:
            await self.notifier.notify_story_failed(job.job_id, error_message)
        return notification


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def build_media_pipeline(settings: Settings) -> MediaPipeline:
    """Wire the production pipeline from settings."""
    encoder = EncoderAdapter(
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        compression_timeout=settings.compression_timeout_seconds,
        extraction_timeout=settings.audio_extraction_timeout_seconds,
        segment_timeout=settings.segment_timeout_seconds,
    )
    return MediaPipeline(
        workspace_manager=WorkspaceManager(root=settings.workspace_root),
        encoder=encoder,
        segmentation=SegmentationPlanner(
            encoder,
            max_segment_seconds=settings.max_segment_duration_seconds,
            min_segment_seconds=settings.min_segment_duration_seconds,
            max_segment_bytes=settings.max_segment_bytes,
        ),
        publisher=ArtifactPublisher(
            build_storage_client(settings),
            max_attempts=settings.upload_max_attempts,
            retry_delay_seconds=settings.retry_delay_seconds,
            download_url_expiry_seconds=settings.download_url_expiry_seconds,
        ),
        notifier=Notifier(
            completion_endpoint=settings.notification_endpoint,
            error_endpoint=settings.error_webhook_url,
            story_endpoint=settings.story_webhook_url,
            fields=NotificationFields(
                url_field=settings.notification_file_url_field,
                id_field=settings.notification_id_field,
                view_url_field=settings.notification_view_url_field,
            ),
            timeout_seconds=settings.notification_timeout_seconds,
            story_timeout_seconds=settings.story_webhook_timeout_seconds,
            max_retries=settings.notification_max_attempts,
            retry_delay_seconds=settings.retry_delay_seconds,
        ),
        downloader=VideoDownloaderService(timeout_seconds=settings.download_timeout_seconds),
    )
