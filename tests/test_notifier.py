"""
Tests for notification payloads and delivery.
"""

import asyncio

import httpx

from app.services.artifact_publisher import StoredArtifact
from app.services.notifier import (
    NotificationFields,
    NotificationStatus,
    Notifier,
    build_completion_payload,
    build_failure_payload,
)

COMPLETION_URL = "https://consumer.test/webhook/file"
ERROR_URL = "https://consumer.test/webhook/error"
STORY_URL = "https://consumer.test/webhook/story"

VIDEO = StoredArtifact(download_url="https://cdn.test/v?download", view_url="https://cdn.test/v", key="uploads/v")
AUDIO = StoredArtifact(download_url="https://cdn.test/a?download", view_url="https://cdn.test/a", key="uploads/a")


def make_notifier(transport, **kwargs) -> Notifier:
    return Notifier(
        completion_endpoint=kwargs.pop("completion_endpoint", COMPLETION_URL),
        error_endpoint=kwargs.pop("error_endpoint", ERROR_URL),
        story_endpoint=kwargs.pop("story_endpoint", STORY_URL),
        retry_delay_seconds=0,
        transport=transport,
        **kwargs,
    )


class TestPayloads:
    """Tests for payload construction."""

    def test_completion_payload_with_audio(self):
        payload = build_completion_payload(NotificationFields(), VIDEO, "job-1", AUDIO)
        assert payload == {
            "fileUrl": "https://cdn.test/v?download",
            "idTrabalho": "job-1",
            "link_video_editado_view": "https://cdn.test/v",
            "audioDownloadUrl": "https://cdn.test/a?download",
            "audioViewUrl": "https://cdn.test/a",
        }

    def test_completion_payload_omits_missing_audio(self):
        payload = build_completion_payload(NotificationFields(), VIDEO, "job-1")
        assert "audioDownloadUrl" not in payload
        assert "audioViewUrl" not in payload

    def test_completion_payload_uses_configured_field_names(self):
        fields = NotificationFields(url_field="url", id_field="jobId", view_url_field="preview")
        payload = build_completion_payload(fields, VIDEO, "job-1")
        assert set(payload) == {"url", "jobId", "preview"}

    def test_failure_payload(self):
        payload = build_failure_payload("upload", "boom", "Traceback...", {"id_trabalho": "job-1"})
        assert payload["processType"] == "upload"
        assert payload["errorMessage"] == "boom"
        assert payload["errorStack"] == "Traceback..."
        assert payload["metadata"] == {"id_trabalho": "job-1"}
        assert "timestamp" in payload


class TestDelivery:
    """Tests for webhook delivery with retries."""

    def test_unconfigured_endpoint_is_skipped_without_network(self, mocker):
        handler = mocker.MagicMock()
        notifier = make_notifier(httpx.MockTransport(handler), completion_endpoint=None)

        outcome = asyncio.run(notifier.notify_completed(VIDEO, "job-1"))

        assert outcome.status is NotificationStatus.SKIPPED
        handler.assert_not_called()

    def test_delivered_on_first_attempt(self, webhook_recorder):
        notifier = make_notifier(webhook_recorder.transport)

        outcome = asyncio.run(notifier.notify_completed(VIDEO, "job-1", AUDIO))

        assert outcome.delivered
        assert outcome.attempts == 1
        assert outcome.status_code == 200
        [payload] = webhook_recorder.payloads_for(COMPLETION_URL)
        assert payload["idTrabalho"] == "job-1"

    def test_non_2xx_is_retried(self, make_webhook_recorder):
        recorder = make_webhook_recorder(status_codes=[500, 502, 200])
        notifier = make_notifier(recorder.transport)

        outcome = asyncio.run(notifier.notify_failed("upload", "boom"))

        assert outcome.delivered
        assert outcome.attempts == 3
        assert len(recorder.payloads_for(ERROR_URL)) == 3

    def test_exhaustion_never_raises(self, make_webhook_recorder):
        recorder = make_webhook_recorder(status_codes=[500, 500, 503])
        notifier = make_notifier(recorder.transport)

        outcome = asyncio.run(notifier.notify_story_published("profile-1", ["https://cdn.test/1"]))

        assert outcome.status is NotificationStatus.EXHAUSTED
        assert outcome.attempts == 3
        assert outcome.status_code == 503
        assert outcome.error.startswith("HTTP 503")

    def test_connection_errors_are_absorbed(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = make_notifier(httpx.MockTransport(handler))

        outcome = asyncio.run(notifier.notify_completed(VIDEO, "job-1"))

        assert outcome.status is NotificationStatus.EXHAUSTED
        assert "connection refused" in outcome.error

    def test_timeouts_are_absorbed(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        notifier = make_notifier(httpx.MockTransport(handler), max_retries=2)

        outcome = asyncio.run(notifier.notify_completed(VIDEO, "job-1"))

        assert outcome.status is NotificationStatus.EXHAUSTED
        assert outcome.attempts == 2
        assert outcome.error == "Request timed out"

    def test_story_payloads(self, webhook_recorder):
        notifier = make_notifier(webhook_recorder.transport)

        asyncio.run(notifier.notify_story_published("profile-1", ["https://cdn.test/1", "https://cdn.test/2"]))
        asyncio.run(notifier.notify_story_failed("profile-1", "download failed"))

        assert webhook_recorder.payloads_for(STORY_URL) == [
            {"profileId": "profile-1", "videos": ["https://cdn.test/1", "https://cdn.test/2"]},
            {"profileId": "profile-1", "error": True, "message": "download failed"},
        ]
