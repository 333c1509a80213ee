"""Tests for the Cassandra compare-and-retry progress store."""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest
from cassandra import OperationTimedOut
from cassandra.cluster import NoHostAvailable, Session

from src.progress.exceptions import StoreUnavailable
from src.progress.merge import ProgressTick
from src.progress.store import CassandraProgressStore


def _result(row=None, was_applied: bool = True) -> Mock:
    result = Mock()
    result.one.return_value = row
    result.was_applied = was_applied
    return result


def _row(tick: ProgressTick, watched: float, version: int, **overrides):
    values = {
        "learner_id": tick.learner_id,
        "course_id": tick.course_id,
        "video_id": tick.video_id,
        "watched_seconds": watched,
        "total_seconds": 600.0,
        "is_completed": False,
        "last_position": watched,
        "watch_count": version,
        "first_watched_at": datetime(2026, 1, 1),
        "last_watched_at": datetime(2026, 1, 1),
        "completed_at": None,
        "version": version,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def mock_session():
    """Mock Cassandra session."""
    session = Mock(spec=Session)
    session.prepare = Mock(side_effect=lambda query: Mock(query=query))
    # Make aexecute awaitable (cassandra-asyncio-driver)
    session.aexecute = AsyncMock()
    return session


@pytest.fixture
def progress_store(mock_session) -> CassandraProgressStore:
    return CassandraProgressStore(
        session=mock_session,
        keyspace="test_keyspace",
        completion_threshold=90,
        retry_backoff_ms=0,
        max_retries=2,
    )


@pytest.fixture
def tick() -> ProgressTick:
    return ProgressTick(
        learner_id=uuid4(),
        course_id=uuid4(),
        video_id=uuid4(),
        watched_seconds=300.0,
        total_seconds=600.0,
    )


class TestPreparedStatements:
    """Tests for statement preparation."""

    def test_writes_are_conditional(self, progress_store) -> None:
        assert "IF NOT EXISTS" in progress_store._insert_record.query
        assert "IF version = ?" in progress_store._update_record.query
        assert "IF NOT EXISTS" in progress_store._claim_signal.query

    def test_keyspace_is_used(self, progress_store) -> None:
        assert "test_keyspace.video_progress" in progress_store._get_record.query


class TestMerge:
    """Tests for the optimistic merge loop."""

    @pytest.mark.asyncio
    async def test_creates_record(self, progress_store, mock_session, tick) -> None:
        mock_session.aexecute.side_effect = [_result(None), _result(was_applied=True)]

        record = await progress_store.merge(tick)

        assert record.watched_seconds == 300
        assert record.version == 1
        assert mock_session.aexecute.await_count == 2
        statement = mock_session.aexecute.await_args_list[1].args[0]
        assert statement is progress_store._insert_record

    @pytest.mark.asyncio
    async def test_updates_with_version_condition(
        self, progress_store, mock_session, tick
    ) -> None:
        mock_session.aexecute.side_effect = [
            _result(_row(tick, watched=450.0, version=3)),
            _result(was_applied=True),
        ]

        record = await progress_store.merge(tick)

        assert record.watched_seconds == 450
        assert record.version == 4
        statement, params = mock_session.aexecute.await_args_list[1].args
        assert statement is progress_store._update_record
        # Condition on the version that was read
        assert params[-1] == 3

    @pytest.mark.asyncio
    async def test_retries_after_lost_race(
        self, progress_store, mock_session, tick
    ) -> None:
        """A concurrent insert wins; the retry merges on top of it."""
        mock_session.aexecute.side_effect = [
            _result(None),
            _result(was_applied=False),
            _result(_row(tick, watched=450.0, version=1)),
            _result(was_applied=True),
        ]

        record = await progress_store.merge(tick)

        assert record.watched_seconds == 450
        assert record.watch_count == 2
        assert record.version == 2
        assert mock_session.aexecute.await_count == 4

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_unavailable(
        self, progress_store, mock_session, tick
    ) -> None:
        mock_session.aexecute.side_effect = [
            _result(None),
            _result(was_applied=False),
        ] * 3

        with pytest.raises(StoreUnavailable):
            await progress_store.merge(tick)

        # Initial attempt plus max_retries
        assert mock_session.aexecute.await_count == 6

    @pytest.mark.asyncio
    async def test_backoff_between_attempts(
        self, progress_store, mock_session, tick
    ) -> None:
        mock_session.aexecute.side_effect = [
            _result(None),
            _result(was_applied=False),
            _result(None),
            _result(was_applied=True),
        ]

        with patch("src.progress.store.asyncio.sleep", new=AsyncMock()) as sleep:
            await progress_store.merge(tick)

        sleep.assert_awaited_once()

    def test_backoff_is_bounded(self, mock_session) -> None:
        store = CassandraProgressStore(
            session=mock_session,
            keyspace="ks",
            completion_threshold=90,
            retry_backoff_ms=25,
        )
        for attempt in range(4):
            assert 0 <= store._backoff(attempt) <= 0.025 * 2**attempt


class TestErrorMapping:
    """Tests for backend error translation."""

    @pytest.mark.asyncio
    async def test_no_host_available(self, progress_store, mock_session, tick) -> None:
        mock_session.aexecute.side_effect = NoHostAvailable("down", {})

        with pytest.raises(StoreUnavailable) as exc_info:
            await progress_store.merge(tick)

        assert exc_info.value.code == "store_unavailable"

    @pytest.mark.asyncio
    async def test_operation_timeout(self, progress_store, mock_session, tick) -> None:
        mock_session.aexecute.side_effect = OperationTimedOut()

        with pytest.raises(StoreUnavailable):
            await progress_store.get(tick.learner_id, tick.course_id, tick.video_id)


class TestReads:
    """Tests for record reads."""

    @pytest.mark.asyncio
    async def test_get_missing(self, progress_store, mock_session, tick) -> None:
        mock_session.aexecute.return_value = _result(None)

        assert await progress_store.get(tick.learner_id, tick.course_id, tick.video_id) is None

    @pytest.mark.asyncio
    async def test_naive_timestamps_become_utc(
        self, progress_store, mock_session, tick
    ) -> None:
        mock_session.aexecute.return_value = _result(_row(tick, 100.0, 1))

        record = await progress_store.get(tick.learner_id, tick.course_id, tick.video_id)

        assert record.last_watched_at.tzinfo == UTC

    @pytest.mark.asyncio
    async def test_list_course_records(self, progress_store, mock_session, tick) -> None:
        mock_session.aexecute.return_value = [
            _row(tick, 100.0, 1),
            _row(tick, 200.0, 2, video_id=uuid4()),
        ]

        records = await progress_store.list_course_records(
            tick.learner_id, tick.course_id
        )

        assert [r.watched_seconds for r in records] == [100.0, 200.0]


class TestCompletionSignalMarker:
    """Tests for the one-shot completion marker."""

    @pytest.mark.asyncio
    async def test_claim_winner(self, progress_store, mock_session) -> None:
        mock_session.aexecute.return_value = _result(was_applied=True)
        claimed = await progress_store.claim_completion_signal(
            uuid4(), uuid4(), datetime.now(UTC)
        )
        assert claimed is True

    @pytest.mark.asyncio
    async def test_claim_loser(self, progress_store, mock_session) -> None:
        mock_session.aexecute.return_value = _result(was_applied=False)
        claimed = await progress_store.claim_completion_signal(
            uuid4(), uuid4(), datetime.now(UTC)
        )
        assert claimed is False

    @pytest.mark.asyncio
    async def test_release(self, progress_store, mock_session) -> None:
        mock_session.aexecute.return_value = _result()
        await progress_store.release_completion_signal(uuid4(), uuid4())
        statement = mock_session.aexecute.await_args.args[0]
        assert statement is progress_store._release_signal
