"""Database models for video progress reconciliation.

Cassandra table definitions for:
- Video progress: one record per (learner, course, video), merged with
  lightweight transactions (compare-and-set on ``version``)
- Completion signals: one marker per (learner, course) guarding the
  one-shot certificate notification

Partition key is the learner so that both the course view and the
dashboard are single-partition reads.
"""

import math
from datetime import UTC, datetime
from typing import Any
from uuid import UUID


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (66.5 -> 67)."""
    return math.floor(value + 0.5)


def watched_percent(watched_seconds: float, total_seconds: float) -> int:
    """Percent of a video watched, clamped to [0, 100]."""
    if total_seconds <= 0:
        return 0
    return max(0, min(100, round_half_up(100 * watched_seconds / total_seconds)))


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

VIDEO_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.video_progress (
    learner_id UUID,
    course_id UUID,
    video_id UUID,
    watched_seconds DOUBLE,
    total_seconds DOUBLE,
    is_completed BOOLEAN,
    last_position DOUBLE,
    watch_count INT,
    first_watched_at TIMESTAMP,
    last_watched_at TIMESTAMP,
    completed_at TIMESTAMP,
    version INT,
    PRIMARY KEY ((learner_id), course_id, video_id)
) WITH CLUSTERING ORDER BY (course_id ASC, video_id ASC)
"""

# Presence of a row means the course completion was already signaled
COMPLETION_SIGNALS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_completion_signals (
    learner_id UUID,
    course_id UUID,
    completed_at TIMESTAMP,
    signaled_at TIMESTAMP,
    PRIMARY KEY ((learner_id, course_id))
)
"""

PROGRESS_TABLES_CQL = [
    VIDEO_PROGRESS_TABLE_CQL,
    COMPLETION_SIGNALS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class ProgressRecord:
    """Merged watch progress of one learner on one video.

    Attributes:
        learner_id: Learner UUID (partition key)
        course_id: Course UUID
        video_id: Video UUID
        watched_seconds: Farthest watched duration, never decreases
        total_seconds: Video length as last reported by the player
        is_completed: Sticky completion flag
        last_position: Last reported playhead (resume), may move backwards
        watch_count: Number of accepted ticks
        first_watched_at: Creation timestamp
        last_watched_at: Timestamp of the last accepted tick
        completed_at: Timestamp of the false -> true completion transition
        version: Compare-and-set tag, bumped by every write
    """

    def __init__(
        self,
        learner_id: UUID,
        course_id: UUID,
        video_id: UUID,
        watched_seconds: float = 0.0,
        total_seconds: float = 0.0,
        is_completed: bool = False,
        last_position: float = 0.0,
        watch_count: int = 0,
        first_watched_at: datetime | None = None,
        last_watched_at: datetime | None = None,
        completed_at: datetime | None = None,
        version: int = 0,
    ):
        self.learner_id = learner_id
        self.course_id = course_id
        self.video_id = video_id
        self.watched_seconds = watched_seconds
        self.total_seconds = total_seconds
        self.is_completed = is_completed
        self.last_position = last_position
        self.watch_count = watch_count
        self.first_watched_at = ensure_utc_aware(first_watched_at)
        self.last_watched_at = ensure_utc_aware(last_watched_at)
        self.completed_at = ensure_utc_aware(completed_at)
        self.version = version

    @property
    def watched_percent(self) -> int:
        """Derived from watched/total on every read, never stored."""
        return watched_percent(self.watched_seconds, self.total_seconds)

    @property
    def completion_percent(self) -> int:
        """Same value as watched_percent, kept for collaborators reading it."""
        return self.watched_percent

    @property
    def exists(self) -> bool:
        """False for placeholder projections of videos never started."""
        return self.version > 0

    @classmethod
    def empty(
        cls,
        learner_id: UUID,
        course_id: UUID,
        video_id: UUID,
        total_seconds: float = 0.0,
    ) -> "ProgressRecord":
        """Placeholder for a video the learner has not started yet."""
        return cls(
            learner_id=learner_id,
            course_id=course_id,
            video_id=video_id,
            total_seconds=total_seconds,
        )

    @classmethod
    def from_row(cls, row: Any) -> "ProgressRecord":
        """Create ProgressRecord instance from Cassandra row."""
        return cls(
            learner_id=row.learner_id,
            course_id=row.course_id,
            video_id=row.video_id,
            watched_seconds=row.watched_seconds or 0.0,
            total_seconds=row.total_seconds or 0.0,
            is_completed=bool(row.is_completed),
            last_position=row.last_position or 0.0,
            watch_count=row.watch_count or 0,
            first_watched_at=row.first_watched_at,
            last_watched_at=row.last_watched_at,
            completed_at=row.completed_at,
            version=row.version or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (derived percents included)."""
        return {
            "learner_id": self.learner_id,
            "course_id": self.course_id,
            "video_id": self.video_id,
            "watched_seconds": self.watched_seconds,
            "total_seconds": self.total_seconds,
            "watched_percent": self.watched_percent,
            "completion_percent": self.completion_percent,
            "is_completed": self.is_completed,
            "last_position": self.last_position,
            "watch_count": self.watch_count,
            "first_watched_at": self.first_watched_at,
            "last_watched_at": self.last_watched_at,
            "completed_at": self.completed_at,
        }

    def __repr__(self) -> str:
        return (
            f"<ProgressRecord learner={self.learner_id} video={self.video_id} "
            f"{self.watched_seconds}/{self.total_seconds}s v{self.version}>"
        )


class CourseProgressSummary:
    """Course-level aggregate derived from per-video records.

    Not authoritative: always recomputable from the records and the catalog.
    """

    def __init__(
        self,
        learner_id: UUID,
        course_id: UUID,
        total_videos: int = 0,
        completed_videos: int = 0,
        course_progress_percent: int = 0,
        total_watched_seconds: float = 0.0,
        course_total_seconds: float = 0.0,
        last_watched_video_id: UUID | None = None,
        last_watched_position: float = 0.0,
        last_watched_at: datetime | None = None,
    ):
        self.learner_id = learner_id
        self.course_id = course_id
        self.total_videos = total_videos
        self.completed_videos = completed_videos
        self.course_progress_percent = course_progress_percent
        self.total_watched_seconds = total_watched_seconds
        self.course_total_seconds = course_total_seconds
        self.last_watched_video_id = last_watched_video_id
        self.last_watched_position = last_watched_position
        self.last_watched_at = ensure_utc_aware(last_watched_at)

    @property
    def is_course_complete(self) -> bool:
        """All videos completed, fully watched, and at 100 percent."""
        return (
            self.total_videos > 0
            and self.completed_videos == self.total_videos
            and self.total_watched_seconds >= self.course_total_seconds
            and self.course_progress_percent == 100  # noqa: PLR2004
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "learner_id": self.learner_id,
            "course_id": self.course_id,
            "total_videos": self.total_videos,
            "completed_videos": self.completed_videos,
            "course_progress_percent": self.course_progress_percent,
            "total_watched_seconds": self.total_watched_seconds,
            "course_total_seconds": self.course_total_seconds,
            "last_watched_video_id": self.last_watched_video_id,
            "last_watched_position": self.last_watched_position,
            "last_watched_at": self.last_watched_at,
            "is_course_complete": self.is_course_complete,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CourseProgressSummary":
        """Rebuild from a cached ``to_dict`` payload (JSON-decoded)."""
        last_video = data.get("last_watched_video_id")
        last_at = data.get("last_watched_at")
        return cls(
            learner_id=UUID(str(data["learner_id"])),
            course_id=UUID(str(data["course_id"])),
            total_videos=data.get("total_videos", 0),
            completed_videos=data.get("completed_videos", 0),
            course_progress_percent=data.get("course_progress_percent", 0),
            total_watched_seconds=data.get("total_watched_seconds", 0.0),
            course_total_seconds=data.get("course_total_seconds", 0.0),
            last_watched_video_id=UUID(str(last_video)) if last_video else None,
            last_watched_position=data.get("last_watched_position", 0.0),
            last_watched_at=datetime.fromisoformat(last_at) if last_at else None,
        )

    def __repr__(self) -> str:
        return (
            f"<CourseProgressSummary learner={self.learner_id} "
            f"course={self.course_id} {self.completed_videos}/{self.total_videos} "
            f"{self.course_progress_percent}%>"
        )
