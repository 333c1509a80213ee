# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Progress record store.

Cassandra has no single-row "max" merge operator, so merges use optimistic
concurrency instead: read the row and its ``version``, compute the merge,
write with a lightweight transaction conditioned on the version, and retry
with exponential backoff when another writer won the race. No locks are
taken; all writes to ``video_progress`` are conditional.
"""

import asyncio
import random
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

import structlog
from cassandra import OperationTimedOut, ReadTimeout, Unavailable, WriteTimeout
from cassandra.cluster import NoHostAvailable

from .exceptions import ConflictError, StoreUnavailable
from .merge import ProgressTick, merge_tick
from .models import ProgressRecord


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (
    NoHostAvailable,
    OperationTimedOut,
    ReadTimeout,
    Unavailable,
    WriteTimeout,
)


class ProgressStore(Protocol):
    """Consistency contract every progress backend must honor."""

    async def get(
        self, learner_id: UUID, course_id: UUID, video_id: UUID
    ) -> ProgressRecord | None: ...

    async def list_course_records(
        self, learner_id: UUID, course_id: UUID
    ) -> list[ProgressRecord]: ...

    async def list_learner_records(self, learner_id: UUID) -> list[ProgressRecord]: ...

    async def merge(self, tick: ProgressTick) -> ProgressRecord: ...

    async def claim_completion_signal(
        self, learner_id: UUID, course_id: UUID, completed_at: datetime
    ) -> bool: ...

    async def release_completion_signal(
        self, learner_id: UUID, course_id: UUID
    ) -> None: ...


class CassandraProgressStore:
    """Compare-and-retry progress store on Cassandra lightweight transactions."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        completion_threshold: int,
        retry_backoff_ms: int = 25,
        max_retries: int = 5,
    ):
        """Initialize with Cassandra session and merge policy."""
        self.session = session
        self.keyspace = keyspace
        self.completion_threshold = completion_threshold
        self.retry_backoff_ms = retry_backoff_ms
        self.max_retries = max_retries
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_record = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.video_progress
            WHERE learner_id = ? AND course_id = ? AND video_id = ?
        """)

        self._get_course_records = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.video_progress
            WHERE learner_id = ? AND course_id = ?
        """)

        self._get_learner_records = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.video_progress
            WHERE learner_id = ?
        """)

        self._insert_record = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.video_progress
            (learner_id, course_id, video_id, watched_seconds, total_seconds,
             is_completed, last_position, watch_count, first_watched_at,
             last_watched_at, completed_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._update_record = self.session.prepare(f"""
            UPDATE {self.keyspace}.video_progress
            SET watched_seconds = ?, total_seconds = ?, is_completed = ?,
                last_position = ?, watch_count = ?, first_watched_at = ?,
                last_watched_at = ?, completed_at = ?, version = ?
            WHERE learner_id = ? AND course_id = ? AND video_id = ?
            IF version = ?
        """)

        self._claim_signal = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.course_completion_signals
            (learner_id, course_id, completed_at, signaled_at)
            VALUES (?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._release_signal = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.course_completion_signals
            WHERE learner_id = ? AND course_id = ?
            IF EXISTS
        """)

    async def _execute(self, statement, params: list):
        try:
            return await self.session.aexecute(statement, params)
        except TRANSIENT_ERRORS as e:
            logger.warning(
                "progress_store_unavailable",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreUnavailable from e

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get(
        self, learner_id: UUID, course_id: UUID, video_id: UUID
    ) -> ProgressRecord | None:
        """Get the record of one video, None if never watched."""
        result = await self._execute(
            self._get_record, [learner_id, course_id, video_id]
        )
        row = result.one()
        return ProgressRecord.from_row(row) if row else None

    async def list_course_records(
        self, learner_id: UUID, course_id: UUID
    ) -> list[ProgressRecord]:
        """All records of a learner inside one course."""
        rows = await self._execute(self._get_course_records, [learner_id, course_id])
        return [ProgressRecord.from_row(row) for row in rows]

    async def list_learner_records(self, learner_id: UUID) -> list[ProgressRecord]:
        """All records of a learner across courses (dashboard)."""
        rows = await self._execute(self._get_learner_records, [learner_id])
        return [ProgressRecord.from_row(row) for row in rows]

    # ==========================================================================
    # Merge
    # ==========================================================================

    async def merge(self, tick: ProgressTick) -> ProgressRecord:
        """Apply ``tick`` atomically and return the stored result.

        Raises:
            StoreUnavailable: Backend failure or retries exhausted
        """
        attempt = 0
        while True:
            current = await self.get(tick.learner_id, tick.course_id, tick.video_id)
            merged = merge_tick(
                current, tick, datetime.now(UTC), self.completion_threshold
            )
            try:
                await self._write(current, merged)
            except ConflictError:
                if attempt >= self.max_retries:
                    logger.warning(
                        "progress_merge_retries_exhausted",
                        learner_id=str(tick.learner_id),
                        video_id=str(tick.video_id),
                        attempts=attempt + 1,
                    )
                    raise StoreUnavailable(
                        "Progress record is under heavy contention"
                    ) from None
                await asyncio.sleep(self._backoff(attempt))
                attempt += 1
                continue

            if attempt:
                logger.debug(
                    "progress_merge_retried",
                    video_id=str(tick.video_id),
                    retries=attempt,
                )
            return merged

    def _backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter, in seconds."""
        ceiling = self.retry_backoff_ms * (2**attempt) / 1000
        return random.uniform(0, ceiling)  # noqa: S311

    async def _write(
        self, current: ProgressRecord | None, merged: ProgressRecord
    ) -> None:
        """Conditional write; raises ConflictError when the row moved."""
        if current is None:
            result = await self._execute(
                self._insert_record,
                [
                    merged.learner_id,
                    merged.course_id,
                    merged.video_id,
                    merged.watched_seconds,
                    merged.total_seconds,
                    merged.is_completed,
                    merged.last_position,
                    merged.watch_count,
                    merged.first_watched_at,
                    merged.last_watched_at,
                    merged.completed_at,
                    merged.version,
                ],
            )
        else:
            result = await self._execute(
                self._update_record,
                [
                    merged.watched_seconds,
                    merged.total_seconds,
                    merged.is_completed,
                    merged.last_position,
                    merged.watch_count,
                    merged.first_watched_at,
                    merged.last_watched_at,
                    merged.completed_at,
                    merged.version,
                    merged.learner_id,
                    merged.course_id,
                    merged.video_id,
                    current.version,
                ],
            )

        if not result.was_applied:
            raise ConflictError

    # ==========================================================================
    # Completion signal marker
    # ==========================================================================

    async def claim_completion_signal(
        self, learner_id: UUID, course_id: UUID, completed_at: datetime
    ) -> bool:
        """Insert the marker if absent. True only for the single winner."""
        result = await self._execute(
            self._claim_signal,
            [learner_id, course_id, completed_at, datetime.now(UTC)],
        )
        return bool(result.was_applied)

    async def release_completion_signal(
        self, learner_id: UUID, course_id: UUID
    ) -> None:
        """Drop the marker so the signal is derived again on the next merge."""
        await self._execute(self._release_signal, [learner_id, course_id])
