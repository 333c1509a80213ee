"""Monotonic merge of a watch tick into a progress record.

Pure function shared by every store implementation; the store is only
responsible for applying the result atomically.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from .models import ProgressRecord, watched_percent


@dataclass(frozen=True)
class ProgressTick:
    """One validated, normalized watch sample from a viewing session."""

    learner_id: UUID
    course_id: UUID
    video_id: UUID
    watched_seconds: float
    total_seconds: float
    position_seconds: float | None = None
    client_timestamp: datetime | None = None
    flush: bool = False

    @property
    def key(self) -> tuple[UUID, UUID]:
        """Throttle gate key."""
        return (self.learner_id, self.video_id)


def merge_tick(
    current: ProgressRecord | None,
    tick: ProgressTick,
    now: datetime,
    completion_threshold: int,
) -> ProgressRecord:
    """Merge ``tick`` into ``current`` and return the new record.

    - watched_seconds: max(current, incoming)
    - total_seconds: incoming, unless incoming <= 0
    - watch_count: +1
    - is_completed: current OR percent >= threshold (never reset)
    - completed_at: set only on the false -> true transition

    ``current`` is not modified. The returned record carries
    ``current.version + 1``.
    """
    position = (
        tick.position_seconds
        if tick.position_seconds is not None
        else tick.watched_seconds
    )

    if current is None or not current.exists:
        total = tick.total_seconds
        watched = max(0.0, tick.watched_seconds)
        completed = watched_percent(watched, total) >= completion_threshold
        return ProgressRecord(
            learner_id=tick.learner_id,
            course_id=tick.course_id,
            video_id=tick.video_id,
            watched_seconds=watched,
            total_seconds=total,
            is_completed=completed,
            last_position=position,
            watch_count=1,
            first_watched_at=now,
            last_watched_at=now,
            completed_at=now if completed else None,
            version=1,
        )

    total = tick.total_seconds if tick.total_seconds > 0 else current.total_seconds
    watched = max(current.watched_seconds, tick.watched_seconds)
    reached = watched_percent(watched, total) >= completion_threshold
    completed = current.is_completed or reached

    completed_at = current.completed_at
    if completed and not current.is_completed:
        completed_at = now

    return ProgressRecord(
        learner_id=current.learner_id,
        course_id=current.course_id,
        video_id=current.video_id,
        watched_seconds=watched,
        total_seconds=total,
        is_completed=completed,
        last_position=position,
        watch_count=current.watch_count + 1,
        first_watched_at=current.first_watched_at or now,
        last_watched_at=now,
        completed_at=completed_at,
        version=current.version + 1,
    )
