"""Tests for certificate collaborator notifiers."""

from datetime import UTC, datetime
from unittest.mock import patch
from uuid import uuid4

import httpx
import orjson
import pytest

from src.certificates import (
    CertificateNotifierError,
    CourseCompletedEvent,
    LoggingCertificateNotifier,
    WebhookCertificateNotifier,
)


WEBHOOK_URL = "https://certificates.test/hooks/course-completed"


@pytest.fixture
def event() -> CourseCompletedEvent:
    return CourseCompletedEvent(
        learner_id=uuid4(),
        course_id=uuid4(),
        completed_at=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
    )


def _patch_transport(handler):
    """Route WebhookCertificateNotifier's AsyncClient through a mock transport."""
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    return patch("src.certificates.notifier.httpx.AsyncClient", side_effect=factory)


class TestWebhookCertificateNotifier:
    """Tests for WebhookCertificateNotifier."""

    @pytest.mark.asyncio
    async def test_posts_event(self, event) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        with _patch_transport(handler):
            await WebhookCertificateNotifier(WEBHOOK_URL).on_course_completed(event)

        assert len(requests) == 1
        assert str(requests[0].url) == WEBHOOK_URL
        body = orjson.loads(requests[0].content)
        assert body == {
            "learner_id": str(event.learner_id),
            "course_id": str(event.course_id),
            "completed_at": "2026-03-01T12:00:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_rejected_status_raises(self, event) -> None:
        with (
            _patch_transport(lambda request: httpx.Response(500, text="oops")),
            pytest.raises(CertificateNotifierError, match="500"),
        ):
            await WebhookCertificateNotifier(WEBHOOK_URL).on_course_completed(event)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, event) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with (
            _patch_transport(handler),
            pytest.raises(CertificateNotifierError),
        ):
            await WebhookCertificateNotifier(WEBHOOK_URL).on_course_completed(event)

    @pytest.mark.asyncio
    async def test_timeout_raises(self, event) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with (
            _patch_transport(handler),
            pytest.raises(CertificateNotifierError, match="timeout"),
        ):
            await WebhookCertificateNotifier(WEBHOOK_URL).on_course_completed(event)


class TestLoggingCertificateNotifier:
    """Tests for the log-only fallback."""

    @pytest.mark.asyncio
    async def test_does_not_raise(self, event) -> None:
        await LoggingCertificateNotifier().on_course_completed(event)


class TestBuildCertificateNotifier:
    """Tests for notifier selection from settings."""

    def test_webhook_when_configured(self) -> None:
        from src.config import Settings
        from src.main import build_certificate_notifier

        settings = Settings(certificate_webhook_url=WEBHOOK_URL)
        notifier = build_certificate_notifier(settings)

        assert isinstance(notifier, WebhookCertificateNotifier)
        assert notifier.url == WEBHOOK_URL

    def test_logging_otherwise(self) -> None:
        from src.config import Settings
        from src.main import build_certificate_notifier

        settings = Settings(certificate_webhook_url=None)
        notifier = build_certificate_notifier(settings)

        assert isinstance(notifier, LoggingCertificateNotifier)
