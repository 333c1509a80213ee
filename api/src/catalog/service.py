# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Catalog collaborator backed by the shared Cassandra catalog tables."""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.progress.exceptions import StoreUnavailable
from src.progress.store import TRANSIENT_ERRORS

from .models import CatalogVideo


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class CatalogService:
    """Read-only access to course video listings and video lengths."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._list_course_videos = self.session.prepare(f"""
            SELECT course_id, position, video_id, title, duration_seconds
            FROM {self.keyspace}.course_videos
            WHERE course_id = ?
        """)

        self._get_video = self.session.prepare(f"""
            SELECT video_id, course_id, duration_seconds
            FROM {self.keyspace}.videos
            WHERE video_id = ?
        """)

    async def list_course_videos(self, course_id: UUID) -> list[CatalogVideo]:
        """Videos of a course in playback order (empty for unknown courses)."""
        rows = await self._execute(self._list_course_videos, [course_id])
        return [CatalogVideo.from_row(row) for row in rows]

    async def get_video_length(self, video_id: UUID) -> float | None:
        """Declared length of a video in seconds, None if the video is unknown."""
        result = await self._execute(self._get_video, [video_id])
        row = result.one()
        if row is None:
            return None
        return float(row.duration_seconds or 0)

    async def get_course_video(
        self, course_id: UUID, video_id: UUID
    ) -> CatalogVideo | None:
        """Find a video inside a course listing."""
        for video in await self.list_course_videos(course_id):
            if video.video_id == video_id:
                return video
        logger.debug(
            "catalog_video_not_in_course",
            course_id=str(course_id),
            video_id=str(video_id),
        )
        return None

    async def _execute(self, statement, params: list):
        try:
            return await self.session.aexecute(statement, params)
        except TRANSIENT_ERRORS as e:
            logger.warning(
                "catalog_unavailable",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreUnavailable("Course catalog temporarily unavailable") from e
