"""Course-level aggregation of per-video progress records."""

from collections.abc import Iterable, Sequence
from uuid import UUID

from src.catalog.models import CatalogVideo

from .models import CourseProgressSummary, ProgressRecord, round_half_up


def summarize_course(
    learner_id: UUID,
    course_id: UUID,
    videos: Sequence[CatalogVideo],
    records: Iterable[ProgressRecord],
) -> CourseProgressSummary:
    """Compute the course summary from the catalog and the learner's records.

    The catalog defines the denominator: a video never started counts as 0%,
    and records for videos no longer in the course are ignored. Durations
    come from the catalog, not from the records.
    """
    by_video = {
        record.video_id: record
        for record in records
        if record.course_id == course_id
    }
    course_records = [by_video[v.video_id] for v in videos if v.video_id in by_video]

    total_videos = len(videos)
    percent_sum = sum(record.completion_percent for record in course_records)
    course_percent = round_half_up(percent_sum / total_videos) if total_videos else 0

    last = max(
        (r for r in course_records if r.last_watched_at is not None),
        key=lambda r: r.last_watched_at,
        default=None,
    )

    return CourseProgressSummary(
        learner_id=learner_id,
        course_id=course_id,
        total_videos=total_videos,
        completed_videos=sum(1 for r in course_records if r.is_completed),
        course_progress_percent=course_percent,
        total_watched_seconds=sum(r.watched_seconds for r in course_records),
        course_total_seconds=sum(v.duration_seconds for v in videos),
        last_watched_video_id=last.video_id if last else None,
        last_watched_position=last.last_position if last else 0.0,
        last_watched_at=last.last_watched_at if last else None,
    )
