"""Shared fixtures: in-memory progress store, fake catalog, API client."""

import os


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key-for-progress-tests")

import asyncio  # noqa: E402
from collections.abc import Iterator  # noqa: E402
from datetime import UTC, datetime  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.security import create_access_token  # noqa: E402
from src.catalog import CatalogVideo  # noqa: E402
from src.progress.completion import CompletionSignalEmitter  # noqa: E402
from src.progress.gate import ThrottleGate  # noqa: E402
from src.progress.merge import ProgressTick, merge_tick  # noqa: E402
from src.progress.models import ProgressRecord  # noqa: E402
from src.progress.service import ProgressService  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock for the throttle gate."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryProgressStore:
    """Progress store keeping records in a dict.

    The merge is atomic because it never suspends between read and write.
    ``delay`` makes merges yield to the event loop first, so tests can
    overlap them.
    """

    def __init__(self, completion_threshold: int = 90, delay: float = 0.0):
        self.completion_threshold = completion_threshold
        self.delay = delay
        self.records: dict[tuple[UUID, UUID, UUID], ProgressRecord] = {}
        self.signals: dict[tuple[UUID, UUID], datetime] = {}
        self.merge_calls = 0

    async def get(self, learner_id, course_id, video_id):
        return self.records.get((learner_id, course_id, video_id))

    async def list_course_records(self, learner_id, course_id):
        return [
            r
            for (lid, cid, _), r in self.records.items()
            if lid == learner_id and cid == course_id
        ]

    async def list_learner_records(self, learner_id):
        return [r for (lid, _, _), r in self.records.items() if lid == learner_id]

    async def merge(self, tick: ProgressTick) -> ProgressRecord:
        self.merge_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        key = (tick.learner_id, tick.course_id, tick.video_id)
        merged = merge_tick(
            self.records.get(key), tick, datetime.now(UTC), self.completion_threshold
        )
        self.records[key] = merged
        return merged

    async def claim_completion_signal(self, learner_id, course_id, completed_at):
        key = (learner_id, course_id)
        if key in self.signals:
            return False
        self.signals[key] = completed_at
        return True

    async def release_completion_signal(self, learner_id, course_id):
        self.signals.pop((learner_id, course_id), None)


class FakeCatalog:
    """Catalog collaborator over a fixed list of videos."""

    def __init__(self, videos: list[CatalogVideo]):
        self.videos = videos

    async def list_course_videos(self, course_id: UUID) -> list[CatalogVideo]:
        return sorted(
            (v for v in self.videos if v.course_id == course_id),
            key=lambda v: v.position,
        )

    async def get_video_length(self, video_id: UUID) -> float | None:
        for video in self.videos:
            if video.video_id == video_id:
                return video.duration_seconds
        return None

    async def get_course_video(self, course_id: UUID, video_id: UUID):
        for video in await self.list_course_videos(course_id):
            if video.video_id == video_id:
                return video
        return None


class RecordingNotifier:
    """Certificate collaborator that records every event it receives."""

    def __init__(self, fail_times: int = 0):
        self.events = []
        self.fail_times = fail_times

    async def on_course_completed(self, event) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("certificate service down")
        self.events.append(event)


@pytest.fixture
def learner_id() -> UUID:
    """Test learner ID."""
    return uuid4()


@pytest.fixture
def course_id() -> UUID:
    """Test course ID."""
    return uuid4()


@pytest.fixture
def course_videos(course_id: UUID) -> list[CatalogVideo]:
    """Three 600 second videos, in order."""
    return [
        CatalogVideo(
            course_id=course_id,
            video_id=uuid4(),
            position=index,
            title=f"Lesson {index + 1}",
            duration_seconds=600.0,
        )
        for index in range(3)
    ]


@pytest.fixture
def catalog(course_videos: list[CatalogVideo]) -> FakeCatalog:
    return FakeCatalog(list(course_videos))


@pytest.fixture
def store() -> InMemoryProgressStore:
    return InMemoryProgressStore(completion_threshold=90)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(clock: FakeClock) -> ThrottleGate:
    return ThrottleGate(window_seconds=5.0, ttl_seconds=300.0, clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def emitter(store, notifier) -> CompletionSignalEmitter:
    return CompletionSignalEmitter(store=store, notifier=notifier)


@pytest.fixture
def progress_service(store, catalog, gate, emitter) -> ProgressService:
    """ProgressService wired to in-memory collaborators, without Redis."""
    return ProgressService(
        store=store,
        catalog=catalog,
        gate=gate,
        emitter=emitter,
        redis=None,
        merge_timeout_seconds=1.0,
    )


@pytest.fixture
def client(progress_service: ProgressService) -> Iterator[TestClient]:
    """API client; the lifespan is not run, services are injected directly."""
    from src.main import app

    app.state.progress_service = progress_service
    yield TestClient(app)
    app.state.progress_service = None


@pytest.fixture
def auth_headers(learner_id: UUID) -> dict[str, str]:
    """Bearer header for the test learner."""
    token = create_access_token({"sub": str(learner_id)})
    return {"Authorization": f"Bearer {token}"}
