"""One-shot course completion signal.

Completion is derived from the records on every accepted merge; the
``course_completion_signals`` marker makes sure the certificate collaborator
hears about it only once per (learner, course), across instances.
"""

import asyncio
from datetime import UTC, datetime

import structlog

from src.certificates import CertificateNotifier, CourseCompletedEvent

from .exceptions import StoreUnavailable
from .models import CourseProgressSummary
from .store import ProgressStore


logger = structlog.get_logger(__name__)


class CompletionSignalEmitter:
    """Claim the completion marker and notify the certificate collaborator."""

    def __init__(self, store: ProgressStore, notifier: CertificateNotifier):
        self.store = store
        self.notifier = notifier
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def maybe_emit(
        self, summary: CourseProgressSummary, completed_at: datetime | None = None
    ) -> bool:
        """Emit the course completion event if this caller wins the marker.

        Delivery runs in the background so the ingestion response never waits
        on the collaborator. Returns True when a notification was scheduled.
        """
        if not summary.is_course_complete:
            return False

        completed_at = completed_at or datetime.now(UTC)
        try:
            claimed = await self.store.claim_completion_signal(
                summary.learner_id, summary.course_id, completed_at
            )
        except StoreUnavailable:
            # Derived again on the next accepted merge
            logger.warning(
                "completion_signal_claim_failed",
                learner_id=str(summary.learner_id),
                course_id=str(summary.course_id),
            )
            return False

        if not claimed:
            return False

        event = CourseCompletedEvent(
            learner_id=summary.learner_id,
            course_id=summary.course_id,
            completed_at=completed_at,
        )
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        logger.info(
            "course_completion_signaled",
            learner_id=str(summary.learner_id),
            course_id=str(summary.course_id),
        )
        return True

    async def _deliver(self, event: CourseCompletedEvent) -> None:
        try:
            await self.notifier.on_course_completed(event)
        except Exception as e:
            logger.exception(
                "completion_signal_delivery_failed",
                learner_id=str(event.learner_id),
                course_id=str(event.course_id),
                error=str(e),
            )
            try:
                await self.store.release_completion_signal(
                    event.learner_id, event.course_id
                )
            except StoreUnavailable:
                logger.error(
                    "completion_signal_release_failed",
                    learner_id=str(event.learner_id),
                    course_id=str(event.course_id),
                )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
