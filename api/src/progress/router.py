"""Video progress API endpoints.

Provides routes for:
- Watch tick ingestion (throttled, monotonic)
- Explicit video completion
- Video and course progress queries
- Resume position, next video and dashboard
"""

from uuid import UUID

from fastapi import APIRouter

from src.auth.dependencies import CurrentLearner

from .dependencies import ProgressServiceDep, handle_progress_error
from .exceptions import ProgressError
from .schemas import (
    CompleteVideoRequest,
    CourseProgressResponse,
    CourseProgressSummaryResponse,
    DashboardResponse,
    NextVideoItem,
    NextVideoResponse,
    ProgressRecordResponse,
    ResumePositionResponse,
    UpdateProgressRequest,
    UpdateProgressResponse,
)


router = APIRouter(prefix="/v1/progress", tags=["progress"])


# ==============================================================================
# Ingestion Endpoints
# ==============================================================================


@router.post(
    "/update",
    response_model=UpdateProgressResponse,
    summary="Submit a watch tick",
)
async def update_progress(
    data: UpdateProgressRequest,
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,
) -> UpdateProgressResponse:
    """Merge a watch tick into the learner's record.

    Routine ticks inside the throttle window are not persisted and come back
    with ``applied = false``; flush ticks are always persisted.
    """
    try:
        record, applied = await progress_service.update_progress(
            learner_id=learner_id,
            course_id=data.course_id,
            video_id=data.video_id,
            watched_seconds=data.watched_seconds,
            total_seconds=data.total_seconds,
            position_seconds=data.position_seconds,
            client_timestamp=data.client_timestamp,
            flush=data.flush,
        )
        return UpdateProgressResponse.from_result(record, applied)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.post(
    "/complete-video",
    response_model=UpdateProgressResponse,
    summary="Mark a video as fully watched",
)
async def complete_video(
    data: CompleteVideoRequest,
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,
) -> UpdateProgressResponse:
    """Record the video as watched to its catalog length."""
    try:
        record, applied = await progress_service.complete_video(
            learner_id=learner_id,
            course_id=data.course_id,
            video_id=data.video_id,
        )
        return UpdateProgressResponse.from_result(record, applied)
    except ProgressError as e:
        raise handle_progress_error(e) from e


# ==============================================================================
# Progress Query Endpoints
# ==============================================================================


@router.get(
    "/course/{course_id}",
    response_model=CourseProgressResponse,
    summary="Get course progress",
)
async def get_course_progress(
    course_id: UUID,
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,
) -> CourseProgressResponse:
    """Course summary and one projection per catalog video, in order."""
    try:
        summary, records = await progress_service.get_course_progress(
            learner_id, course_id
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return CourseProgressResponse(
        summary=CourseProgressSummaryResponse.from_entity(summary),
        videos=[ProgressRecordResponse.from_entity(r) for r in records],
    )


@router.get(
    "/video/{course_id}/{video_id}",
    response_model=ProgressRecordResponse,
    summary="Get video progress",
)
async def get_video_progress(
    course_id: UUID,
    video_id: UUID,
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,
) -> ProgressRecordResponse:
    try:
        record = await progress_service.get_video_progress(
            learner_id, course_id, video_id
        )
        return ProgressRecordResponse.from_entity(record)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/resume/{course_id}/{video_id}",
    response_model=ResumePositionResponse,
    summary="Get resume position",
)
async def get_resume_position(
    course_id: UUID,
    video_id: UUID,
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,
) -> ResumePositionResponse:
    """Playhead to restart from; 0 for a video never started."""
    try:
        record = await progress_service.get_resume_position(
            learner_id, course_id, video_id
        )
        return ResumePositionResponse.from_entity(record)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/next-video/{course_id}/{video_id}",
    response_model=NextVideoResponse,
    summary="Get next video in course",
)
async def get_next_video(
    course_id: UUID,
    video_id: UUID,
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,  # noqa: ARG001
) -> NextVideoResponse:
    try:
        video = await progress_service.get_next_video(course_id, video_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    if video is None:
        return NextVideoResponse(next_video=None, is_last_video=True)
    return NextVideoResponse(next_video=NextVideoItem.from_catalog(video))


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Get progress across courses",
)
async def get_dashboard(
    progress_service: ProgressServiceDep,
    learner_id: CurrentLearner,
) -> DashboardResponse:
    """Summaries of every started course, most recently watched first."""
    try:
        summaries, completed, average = await progress_service.get_dashboard(
            learner_id
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return DashboardResponse(
        courses=[CourseProgressSummaryResponse.from_entity(s) for s in summaries],
        total_courses=len(summaries),
        completed_courses=completed,
        average_progress_percent=average,
    )
