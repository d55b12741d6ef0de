"""
Notifier - Delivers job outcome payloads to external endpoints.

This service handles notification delivery with:
- Automatic retries with exponential backoff
- Per-attempt timeouts
- Configurable field names for the completion payload
- A returned outcome instead of raised errors
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import httpx

from app.services.artifact_publisher import StoredArtifact

logger = logging.getLogger(__name__)


class NotificationStatus(str, Enum):
    """Terminal state of a notification."""

    SKIPPED = "skipped"
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"


@dataclass
class NotificationOutcome:
    """Result of a notification delivery."""

    status: NotificationStatus
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0
    response_body: Optional[Any] = None

    @property
    def delivered(self) -> bool:
        return self.status is NotificationStatus.DELIVERED


@dataclass(frozen=True)
class NotificationFields:
    """Key names the completion consumer expects."""

    url_field: str = "fileUrl"
    id_field: str = "idTrabalho"
    view_url_field: str = "link_video_editado_view"


def build_completion_payload(
    fields: NotificationFields,
    video: StoredArtifact,
    correlation_id: str,
    audio: Optional[StoredArtifact] = None,
) -> dict[str, Any]:
    """Build the single-file completion payload."""
    payload = {
        fields.url_field: video.download_url,
        fields.id_field: correlation_id,
        fields.view_url_field: video.view_url,
    }
    if audio is not None:
        payload["audioDownloadUrl"] = audio.download_url
        payload["audioViewUrl"] = audio.view_url
    return payload


def build_failure_payload(
    process_type: str,
    error_message: str,
    error_stack: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build the error-webhook payload."""
    return {
        "processType": process_type,
        "errorMessage": error_message,
        "errorStack": error_stack,
        "metadata": metadata or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class Notifier:
    """
    Delivers completion and failure notifications.

    Delivery never raises: an unconfigured endpoint is SKIPPED and repeated
    failures end as EXHAUSTED with the last error message.
    """

    def __init__(
        self,
        completion_endpoint: Optional[str] = None,
        error_endpoint: Optional[str] = None,
        story_endpoint: Optional[str] = None,
        fields: Optional[NotificationFields] = None,
        timeout_seconds: float = 10.0,
        story_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the notifier.

        Args:
            completion_endpoint: Receives single-file completion payloads
            error_endpoint: Receives failure reports for every job kind
            story_endpoint: Receives story segment URLs and story failures
            fields: Completion payload key names
            timeout_seconds: HTTP timeout per attempt
            story_timeout_seconds: HTTP timeout per attempt for the story webhook
            max_retries: Maximum number of attempts
            retry_delay_seconds: Base delay between attempts (exponential backoff)
            transport: Optional httpx transport (used by tests)
        """
        self.completion_endpoint = completion_endpoint
        self.error_endpoint = error_endpoint
        self.story_endpoint = story_endpoint
        self.fields = fields or NotificationFields()
        self.timeout = timeout_seconds
        self.story_timeout = story_timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay_seconds
        self._transport = transport

    async def notify_completed(
        self,
        video: StoredArtifact,
        correlation_id: str,
        audio: Optional[StoredArtifact] = None,
    ) -> NotificationOutcome:
        """Report the published video (and audio, if any) for an upload job."""
        payload = build_completion_payload(self.fields, video, correlation_id, audio)
        return await self.deliver(self.completion_endpoint, payload, label="completion")

    async def notify_failed(
        self,
        process_type: str,
        error_message: str,
        error_stack: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> NotificationOutcome:
        """Report a failed job to the error webhook."""
        payload = build_failure_payload(process_type, error_message, error_stack, metadata)
        return await self.deliver(self.error_endpoint, payload, label="failure")

    async def notify_story_published(self, profile_id: str, video_urls: list[str]) -> NotificationOutcome:
        payload = {"profileId": profile_id, "videos": video_urls}
        return await self.deliver(
            self.story_endpoint, payload, label="story", timeout=self.story_timeout
        )

    async def notify_story_failed(self, profile_id: str, message: str) -> NotificationOutcome:
        payload = {"profileId": profile_id, "error": True, "message": message}
        return await self.deliver(self.story_endpoint, payload, label="story failure")

    async def deliver(
        self,
        url: Optional[str],
        payload: dict[str, Any],
        label: str = "notification",
        timeout: Optional[float] = None,
    ) -> NotificationOutcome:
        """
        POST a JSON payload with automatic retries.

        Args:
            url: Target endpoint; None or empty skips delivery
            payload: JSON-serializable body
            label: Name used in log lines
            timeout: Per-attempt timeout override

        Returns:
            NotificationOutcome describing the terminal state
        """
        if not url:
            logger.info(f"No endpoint configured for {label} notification, skipping")
            return NotificationOutcome(status=NotificationStatus.SKIPPED)

        logger.info(f"Sending {label} notification to {url}: {json.dumps(payload, default=str)[:500]}")

        last_error: Optional[str] = None
        last_status: Optional[int] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=timeout or self.timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.post(
                        url,
                        json=payload,
                        headers={"Content-Type": "application/json"},
                    )

                last_status = response.status_code
                if response.status_code >= 300:
                    raise NotificationFailure(f"HTTP {response.status_code}: {response.text[:200]}")

                logger.info(
                    f"{label.capitalize()} notification delivered "
                    f"(attempt {attempt}, status {response.status_code})"
                )
                return NotificationOutcome(
                    status=NotificationStatus.DELIVERED,
                    status_code=response.status_code,
                    attempts=attempt,
                    response_body=_response_body(response),
                )

            except NotificationFailure as e:
                last_error = str(e)
                logger.warning(f"{label.capitalize()} notification failed (attempt {attempt}, {last_error})")

            except httpx.TimeoutException:
                last_error = "Request timed out"
                logger.warning(f"{label.capitalize()} notification timeout: {url} (attempt {attempt})")

            except httpx.RequestError as e:
                last_error = f"Request error: {e}"
                logger.warning(f"{label.capitalize()} notification error: {url} (attempt {attempt}, {last_error})")

            except Exception as e:
                last_error = f"Unexpected error: {e}"
                logger.exception(f"{label.capitalize()} notification unexpected error: {url} (attempt {attempt})")

            # Wait before retry (exponential backoff)
            if attempt < self.max_retries:
                delay = self.retry_delay * (2 ** (attempt - 1))
                await asyncio.sleep(delay)

        logger.error(f"{label.capitalize()} notification failed after {self.max_retries} attempts: {url}")
        return NotificationOutcome(
            status=NotificationStatus.EXHAUSTED,
            status_code=last_status,
            error=last_error,
            attempts=self.max_retries,
        )


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


class NotificationFailure(Exception):
    """Exception raised when an endpoint rejects a notification."""
    pass
