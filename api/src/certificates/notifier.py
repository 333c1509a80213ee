"""Certificate collaborator notifications.

The progress engine only announces that a course became complete; issuing
and rendering the certificate happens in the certificate service.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import httpx
import structlog


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CourseCompletedEvent:
    """One-shot course completion notification."""

    learner_id: UUID
    course_id: UUID
    completed_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "learner_id": str(self.learner_id),
            "course_id": str(self.course_id),
            "completed_at": self.completed_at.isoformat(),
        }


class CertificateNotifierError(Exception):
    """Raised when the certificate collaborator could not be notified."""


class CertificateNotifier(Protocol):
    """Receiver of course completion events."""

    async def on_course_completed(self, event: CourseCompletedEvent) -> None: ...


class WebhookCertificateNotifier:
    """Deliver completion events to the certificate service over HTTP."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    async def on_course_completed(self, event: CourseCompletedEvent) -> None:
        """POST the event; any non-2xx answer is a delivery failure.

        Raises:
            CertificateNotifierError: On timeout, transport error or bad status
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=event.to_payload())
        except httpx.TimeoutException as e:
            logger.error("certificate_webhook_timeout", error=str(e))
            raise CertificateNotifierError("Certificate webhook timeout") from e
        except httpx.RequestError as e:
            logger.error("certificate_webhook_request_error", error=str(e))
            raise CertificateNotifierError(f"Certificate webhook error: {e}") from e

        if not response.is_success:
            logger.error(
                "certificate_webhook_rejected",
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise CertificateNotifierError(
                f"Certificate webhook returned {response.status_code}"
            )

        logger.info(
            "certificate_webhook_delivered",
            learner_id=str(event.learner_id),
            course_id=str(event.course_id),
        )


class LoggingCertificateNotifier:
    """Fallback used when no webhook is configured (development)."""

    async def on_course_completed(self, event: CourseCompletedEvent) -> None:
        logger.info("course_completed_event", **event.to_payload())
