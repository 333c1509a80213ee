"""Pydantic schemas for video progress reconciliation.

Request and response models for:
- Watch tick ingestion and explicit completion
- Video and course progress queries
- Resume, next-video and dashboard views
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.catalog import CatalogVideo

from .models import CourseProgressSummary, ProgressRecord


# ==============================================================================
# Ingestion Schemas
# ==============================================================================


class UpdateProgressRequest(BaseModel):
    """Watch tick sent by the player (routine ticks every few seconds)."""

    course_id: UUID = Field(..., description="Course UUID")
    video_id: UUID = Field(..., description="Video UUID")
    watched_seconds: float = Field(
        ..., ge=0, description="Farthest point watched in this session"
    )
    total_seconds: float = Field(..., gt=0, description="Video length in seconds")
    position_seconds: float | None = Field(
        default=None, ge=0, description="Current playhead, for resume"
    )
    client_timestamp: datetime | None = Field(
        default=None, description="Client clock, informational only"
    )
    flush: bool = Field(
        default=False,
        description="Pause, tab hide, unload or completion: always persisted",
    )


class CompleteVideoRequest(BaseModel):
    """Explicit completion of a video."""

    course_id: UUID = Field(..., description="Course UUID")
    video_id: UUID = Field(..., description="Video UUID")


# ==============================================================================
# Record Schemas
# ==============================================================================


class ProgressRecordResponse(BaseModel):
    """Projection of one per-video progress record."""

    model_config = ConfigDict(from_attributes=True)

    course_id: UUID
    video_id: UUID
    watched_seconds: float
    total_seconds: float
    watched_percent: int = Field(ge=0, le=100)
    completion_percent: int = Field(ge=0, le=100)
    is_completed: bool
    last_position: float = Field(description="Resume position")
    watch_count: int
    first_watched_at: datetime | None = None
    last_watched_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: ProgressRecord) -> "ProgressRecordResponse":
        """Create response from entity."""
        return cls(
            course_id=entity.course_id,
            video_id=entity.video_id,
            watched_seconds=entity.watched_seconds,
            total_seconds=entity.total_seconds,
            watched_percent=entity.watched_percent,
            completion_percent=entity.completion_percent,
            is_completed=entity.is_completed,
            last_position=entity.last_position,
            watch_count=entity.watch_count,
            first_watched_at=entity.first_watched_at,
            last_watched_at=entity.last_watched_at,
            completed_at=entity.completed_at,
        )


class UpdateProgressResponse(ProgressRecordResponse):
    """Record after a tick; ``applied`` is False when throttled or superseded."""

    applied: bool

    @classmethod
    def from_result(
        cls, entity: ProgressRecord, applied: bool
    ) -> "UpdateProgressResponse":
        return cls(
            **ProgressRecordResponse.from_entity(entity).model_dump(),
            applied=applied,
        )


# ==============================================================================
# Course Schemas
# ==============================================================================


class CourseProgressSummaryResponse(BaseModel):
    """Course-level aggregate."""

    course_id: UUID
    total_videos: int
    completed_videos: int
    course_progress_percent: int = Field(ge=0, le=100)
    total_watched_seconds: float
    course_total_seconds: float
    last_watched_video_id: UUID | None = None
    last_watched_position: float = 0.0
    last_watched_at: datetime | None = None
    is_course_complete: bool

    @classmethod
    def from_entity(
        cls, entity: CourseProgressSummary
    ) -> "CourseProgressSummaryResponse":
        """Create response from entity."""
        return cls(
            course_id=entity.course_id,
            total_videos=entity.total_videos,
            completed_videos=entity.completed_videos,
            course_progress_percent=entity.course_progress_percent,
            total_watched_seconds=entity.total_watched_seconds,
            course_total_seconds=entity.course_total_seconds,
            last_watched_video_id=entity.last_watched_video_id,
            last_watched_position=entity.last_watched_position,
            last_watched_at=entity.last_watched_at,
            is_course_complete=entity.is_course_complete,
        )


class CourseProgressResponse(BaseModel):
    """Course summary with one projection per catalog video."""

    summary: CourseProgressSummaryResponse
    videos: list[ProgressRecordResponse] = Field(default_factory=list)


# ==============================================================================
# Navigation Schemas
# ==============================================================================


class ResumePositionResponse(BaseModel):
    """Where to restart a video."""

    video_id: UUID
    resume_position: float = 0.0
    is_completed: bool = False
    watched_percent: int = 0

    @classmethod
    def from_entity(cls, entity: ProgressRecord) -> "ResumePositionResponse":
        return cls(
            video_id=entity.video_id,
            resume_position=entity.last_position,
            is_completed=entity.is_completed,
            watched_percent=entity.watched_percent,
        )


class NextVideoItem(BaseModel):
    """Catalog entry of the following video."""

    video_id: UUID
    title: str | None = None
    duration_seconds: float = 0.0
    position: int

    @classmethod
    def from_catalog(cls, video: CatalogVideo) -> "NextVideoItem":
        return cls(
            video_id=video.video_id,
            title=video.title,
            duration_seconds=video.duration_seconds,
            position=video.position,
        )


class NextVideoResponse(BaseModel):
    """Next video in course order, null after the last one."""

    next_video: NextVideoItem | None = None
    is_last_video: bool = False


# ==============================================================================
# Dashboard Schemas
# ==============================================================================


class DashboardResponse(BaseModel):
    """Progress across every course the learner has started."""

    courses: list[CourseProgressSummaryResponse] = Field(default_factory=list)
    total_courses: int = 0
    completed_courses: int = 0
    average_progress_percent: int = 0
