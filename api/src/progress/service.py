"""Progress reconciliation service layer.

Business logic for:
- Tick ingestion (validation, throttling, atomic merge)
- Course summaries with short-lived Redis caching
- Completion signaling after accepted merges
- Resume, next-video and dashboard queries
"""

import asyncio
import math
from collections.abc import Awaitable
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID

import orjson
import structlog
from redis.exceptions import RedisError

from src.core.redis import course_summary_key

from .aggregation import summarize_course
from .exceptions import NotFoundError, StoreUnavailable, ValidationError
from .merge import ProgressTick
from .models import CourseProgressSummary, ProgressRecord, round_half_up


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from src.catalog import CatalogService, CatalogVideo

    from .completion import CompletionSignalEmitter
    from .gate import ThrottleGate
    from .store import ProgressStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProgressService:
    """Service for video progress reconciliation."""

    def __init__(
        self,
        store: "ProgressStore",
        catalog: "CatalogService",
        gate: "ThrottleGate",
        emitter: "CompletionSignalEmitter",
        redis: "Redis | None" = None,
        merge_timeout_seconds: float = 3.0,
        summary_cache_ttl_seconds: int = 30,
    ):
        self.store = store
        self.catalog = catalog
        self.gate = gate
        self.emitter = emitter
        self.redis = redis
        self.merge_timeout_seconds = merge_timeout_seconds
        self.summary_cache_ttl_seconds = summary_cache_ttl_seconds

    # ==========================================================================
    # Ingestion
    # ==========================================================================

    async def update_progress(
        self,
        learner_id: UUID,
        course_id: UUID,
        video_id: UUID,
        watched_seconds: float,
        total_seconds: float,
        position_seconds: float | None = None,
        client_timestamp: datetime | None = None,
        flush: bool = False,
    ) -> tuple[ProgressRecord, bool]:
        """Accept one watch tick.

        Args:
            learner_id: Authenticated learner
            course_id: Course the video belongs to
            video_id: Video being watched
            watched_seconds: Farthest point watched in this session
            total_seconds: Video length reported by the player
            position_seconds: Current playhead, defaults to watched_seconds
            client_timestamp: Client clock, informational only
            flush: Pause/hide/unload/completion tick, bypasses the window

        Returns:
            Tuple of (current record, applied). ``applied`` is False when the
            tick was throttled or superseded by a newer one.

        Raises:
            ValidationError: Negative watched time or non-positive total
            NotFoundError: Unknown course or video outside the course
            StoreUnavailable: Backend failure or merge timeout
        """
        tick = self._normalize_tick(
            learner_id,
            course_id,
            video_id,
            watched_seconds,
            total_seconds,
            position_seconds,
            client_timestamp,
            flush,
        )

        video = await self._catalog(
            self.catalog.get_course_video(course_id, video_id)
        )
        if video is None:
            raise NotFoundError("Video not found in course")

        if not self.gate.admit(tick.key, flush=tick.flush):
            logger.debug(
                "progress_throttled",
                learner_id=str(learner_id),
                video_id=str(video_id),
            )
            return await self._current_record(video, learner_id), False

        try:
            applied, record = await self.gate.run_latest(
                tick.key,
                tick.watched_seconds,
                lambda watched: self._merge(
                    replace(tick, watched_seconds=min(watched, tick.total_seconds))
                ),
            )
        except StoreUnavailable:
            self.gate.release(tick.key)
            raise

        if not applied or record is None:
            logger.debug(
                "progress_superseded",
                learner_id=str(learner_id),
                video_id=str(video_id),
            )
            return await self._current_record(video, learner_id), False

        logger.info(
            "progress_merged",
            learner_id=str(learner_id),
            course_id=str(course_id),
            video_id=str(video_id),
            watched_percent=record.watched_percent,
            is_completed=record.is_completed,
            flush=tick.flush,
        )

        await self._after_merge(record)
        return record, True

    async def complete_video(
        self, learner_id: UUID, course_id: UUID, video_id: UUID
    ) -> tuple[ProgressRecord, bool]:
        """Explicit completion: a flush tick at the catalog-declared length."""
        video = await self._catalog(
            self.catalog.get_course_video(course_id, video_id)
        )
        if video is None:
            raise NotFoundError("Video not found in course")

        length = await self._catalog(self.catalog.get_video_length(video_id))
        if not length:
            length = video.duration_seconds
        if length <= 0:
            raise ValidationError("Video length is unknown")

        return await self.update_progress(
            learner_id=learner_id,
            course_id=course_id,
            video_id=video_id,
            watched_seconds=length,
            total_seconds=length,
            flush=True,
        )

    def _normalize_tick(
        self,
        learner_id: UUID,
        course_id: UUID,
        video_id: UUID,
        watched_seconds: float,
        total_seconds: float,
        position_seconds: float | None,
        client_timestamp: datetime | None,
        flush: bool,
    ) -> ProgressTick:
        if not math.isfinite(watched_seconds) or watched_seconds < 0:
            raise ValidationError("watched_seconds must be >= 0")
        if not math.isfinite(total_seconds) or total_seconds <= 0:
            raise ValidationError("total_seconds must be > 0")

        watched = min(watched_seconds, total_seconds)
        if position_seconds is not None:
            if not math.isfinite(position_seconds):
                raise ValidationError("position_seconds must be finite")
            position_seconds = max(0.0, min(position_seconds, total_seconds))

        return ProgressTick(
            learner_id=learner_id,
            course_id=course_id,
            video_id=video_id,
            watched_seconds=watched,
            total_seconds=total_seconds,
            position_seconds=position_seconds,
            client_timestamp=client_timestamp,
            flush=flush,
        )

    async def _merge(self, tick: ProgressTick) -> ProgressRecord:
        try:
            return await asyncio.wait_for(
                self.store.merge(tick), timeout=self.merge_timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                "progress_merge_timeout",
                learner_id=str(tick.learner_id),
                video_id=str(tick.video_id),
                timeout=self.merge_timeout_seconds,
            )
            raise StoreUnavailable("Progress merge timed out") from None

    async def _after_merge(self, record: ProgressRecord) -> None:
        """Invalidate cached summary and evaluate course completion.

        Failures here never undo the merge.
        """
        await self._invalidate_summary(record.learner_id, record.course_id)

        # A course cannot be complete while the video just merged is not
        if not record.is_completed:
            return

        try:
            summary = await self._compute_summary(record.learner_id, record.course_id)
            if summary is not None:
                await self.emitter.maybe_emit(summary, completed_at=record.completed_at)
        except StoreUnavailable:
            # Derived again on the next accepted merge
            logger.warning(
                "completion_evaluation_failed",
                learner_id=str(record.learner_id),
                course_id=str(record.course_id),
            )
        except Exception as e:
            logger.exception(
                "completion_evaluation_error",
                learner_id=str(record.learner_id),
                course_id=str(record.course_id),
                error=str(e),
            )

    async def _catalog(self, lookup: Awaitable[T]) -> T:
        """Await a catalog lookup, bounded like a merge."""
        try:
            return await asyncio.wait_for(lookup, timeout=self.merge_timeout_seconds)
        except TimeoutError:
            logger.warning("catalog_lookup_timeout", timeout=self.merge_timeout_seconds)
            raise StoreUnavailable("Course catalog lookup timed out") from None

    async def _current_record(
        self, video: "CatalogVideo", learner_id: UUID
    ) -> ProgressRecord:
        record = await self.store.get(learner_id, video.course_id, video.video_id)
        if record is not None:
            return record
        return ProgressRecord.empty(
            learner_id, video.course_id, video.video_id, video.duration_seconds
        )

    # ==========================================================================
    # Course Queries
    # ==========================================================================

    async def get_course_progress(
        self, learner_id: UUID, course_id: UUID
    ) -> tuple[CourseProgressSummary, list[ProgressRecord]]:
        """Course summary plus one projection per catalog video, in order.

        Raises:
            NotFoundError: Course has no videos in the catalog
        """
        videos = await self._catalog(self.catalog.list_course_videos(course_id))
        if not videos:
            raise NotFoundError("Course not found")

        records = await self.store.list_course_records(learner_id, course_id)
        summary = summarize_course(learner_id, course_id, videos, records)

        by_video = {record.video_id: record for record in records}
        projections = [
            by_video.get(video.video_id)
            or ProgressRecord.empty(
                learner_id, course_id, video.video_id, video.duration_seconds
            )
            for video in videos
        ]
        return summary, projections

    async def get_course_summary(
        self, learner_id: UUID, course_id: UUID
    ) -> CourseProgressSummary | None:
        """Course summary, served from Redis when cached.

        Returns:
            Summary, or None when the course has no videos in the catalog
        """
        cached = await self._get_cached_summary(learner_id, course_id)
        if cached is not None:
            return cached

        summary = await self._compute_summary(learner_id, course_id)
        if summary is not None:
            await self._cache_summary(summary)
        return summary

    async def _compute_summary(
        self, learner_id: UUID, course_id: UUID
    ) -> CourseProgressSummary | None:
        videos = await self._catalog(self.catalog.list_course_videos(course_id))
        if not videos:
            return None
        records = await self.store.list_course_records(learner_id, course_id)
        return summarize_course(learner_id, course_id, videos, records)

    # ==========================================================================
    # Video Queries
    # ==========================================================================

    async def get_video_progress(
        self, learner_id: UUID, course_id: UUID, video_id: UUID
    ) -> ProgressRecord:
        """Record projection of one video (empty when never watched)."""
        video = await self._catalog(
            self.catalog.get_course_video(course_id, video_id)
        )
        if video is None:
            raise NotFoundError("Video not found in course")
        return await self._current_record(video, learner_id)

    async def get_resume_position(
        self, learner_id: UUID, course_id: UUID, video_id: UUID
    ) -> ProgressRecord:
        """Record carrying the playhead to resume from."""
        return await self.get_video_progress(learner_id, course_id, video_id)

    async def get_next_video(
        self, course_id: UUID, video_id: UUID
    ) -> "CatalogVideo | None":
        """Next video in course order, None after the last one.

        Raises:
            NotFoundError: Unknown course or video outside the course
        """
        videos = await self._catalog(self.catalog.list_course_videos(course_id))
        for index, video in enumerate(videos):
            if video.video_id == video_id:
                return videos[index + 1] if index + 1 < len(videos) else None
        raise NotFoundError("Video not found in course")

    # ==========================================================================
    # Dashboard
    # ==========================================================================

    async def get_dashboard(
        self, learner_id: UUID
    ) -> tuple[list[CourseProgressSummary], int, int]:
        """Summaries of every course the learner has progress in.

        Returns:
            Tuple of (summaries, completed_courses, average_progress_percent)
        """
        records = await self.store.list_learner_records(learner_id)

        course_ids: list[UUID] = []
        for record in records:
            if record.course_id not in course_ids:
                course_ids.append(record.course_id)

        summaries = []
        for course_id in course_ids:
            summary = await self.get_course_summary(learner_id, course_id)
            if summary is not None:
                summaries.append(summary)

        summaries.sort(
            key=lambda s: s.last_watched_at.timestamp() if s.last_watched_at else 0,
            reverse=True,
        )
        completed = sum(1 for s in summaries if s.is_course_complete)
        average = (
            round_half_up(
                sum(s.course_progress_percent for s in summaries) / len(summaries)
            )
            if summaries
            else 0
        )
        return summaries, completed, average

    # ==========================================================================
    # Summary Cache
    # ==========================================================================

    async def _get_cached_summary(
        self, learner_id: UUID, course_id: UUID
    ) -> CourseProgressSummary | None:
        if not self.redis:
            return None
        try:
            cached = await self.redis.get(course_summary_key(learner_id, course_id))
        except RedisError as e:
            logger.warning("summary_cache_read_failed", error=str(e))
            return None
        if cached is None:
            return None
        return CourseProgressSummary.from_dict(orjson.loads(cached))

    async def _cache_summary(self, summary: CourseProgressSummary) -> None:
        if not self.redis:
            return
        try:
            await self.redis.setex(
                course_summary_key(summary.learner_id, summary.course_id),
                self.summary_cache_ttl_seconds,
                orjson.dumps(summary.to_dict()),
            )
        except RedisError as e:
            logger.warning("summary_cache_write_failed", error=str(e))

    async def _invalidate_summary(self, learner_id: UUID, course_id: UUID) -> None:
        if not self.redis:
            return
        try:
            await self.redis.delete(course_summary_key(learner_id, course_id))
        except RedisError as e:
            logger.warning("summary_cache_invalidate_failed", error=str(e))
