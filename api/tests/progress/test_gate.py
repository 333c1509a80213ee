"""Tests for the throttle and in-flight dedup gate."""

import asyncio

import pytest

from src.progress.gate import ThrottleGate


KEY = ("learner", "video")


class TestAdmit:
    """Tests for the throttle window."""

    def test_first_tick_is_admitted(self, gate: ThrottleGate) -> None:
        assert gate.admit(KEY) is True

    def test_tick_inside_window_is_dropped(self, gate, clock) -> None:
        assert gate.admit(KEY) is True
        clock.advance(2)
        assert gate.admit(KEY) is False

    def test_tick_after_window_is_admitted(self, gate, clock) -> None:
        gate.admit(KEY)
        clock.advance(5)
        assert gate.admit(KEY) is True

    def test_dropped_tick_does_not_restart_window(self, gate, clock) -> None:
        gate.admit(KEY)
        clock.advance(3)
        assert gate.admit(KEY) is False
        clock.advance(2)
        assert gate.admit(KEY) is True

    def test_flush_bypasses_window(self, gate, clock) -> None:
        gate.admit(KEY)
        clock.advance(1)
        assert gate.admit(KEY, flush=True) is True

    def test_keys_are_independent(self, gate) -> None:
        assert gate.admit(("learner", "video-a")) is True
        assert gate.admit(("learner", "video-b")) is True
        assert gate.admit(("other", "video-a")) is True

    def test_release_reopens_window(self, gate, clock) -> None:
        gate.admit(KEY)
        gate.release(KEY)
        clock.advance(1)
        assert gate.admit(KEY) is True

    def test_release_unknown_key(self, gate) -> None:
        gate.release(("nobody", "nothing"))
        assert len(gate) == 0


class TestEviction:
    """Tests for bounded gate state."""

    def test_idle_entries_expire(self, gate, clock) -> None:
        gate.admit(("learner", "old"))
        clock.advance(301)
        gate.admit(KEY)

        assert len(gate) == 1

    def test_max_keys_evicts_oldest(self, clock) -> None:
        gate = ThrottleGate(window_seconds=5.0, max_keys=2, clock=clock)
        gate.admit("a")
        clock.advance(0.1)
        gate.admit("b")
        clock.advance(0.1)
        gate.admit("c")

        assert len(gate) == 2
        # "a" was evicted, so it is admitted again as a fresh key
        assert gate.admit("a") is True


class TestRunLatest:
    """Tests for cancellation of superseded merges."""

    @pytest.mark.asyncio
    async def test_returns_result(self, gate) -> None:
        async def operation(watched):
            return watched

        assert await gate.run_latest(KEY, 42.0, operation) == (True, 42.0)

    @pytest.mark.asyncio
    async def test_newer_operation_supersedes_older(self, gate) -> None:
        started = asyncio.Event()

        async def slow(watched):
            started.set()
            await asyncio.sleep(10)
            return "slow"

        async def fast(watched):
            return "fast"

        first = asyncio.create_task(gate.run_latest(KEY, 100.0, slow))
        await started.wait()
        second = await gate.run_latest(KEY, 50.0, fast)

        assert second == (True, "fast")
        assert await first == (False, None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("older", "newer"), [(450.0, 300.0), (300.0, 450.0)])
    async def test_superseded_watched_is_carried_forward(
        self, gate, older, newer
    ) -> None:
        """The newer operation receives the larger of both watched values."""
        started = asyncio.Event()

        async def slow(watched):
            started.set()
            await asyncio.sleep(10)
            return watched

        async def fast(watched):
            return watched

        first = asyncio.create_task(gate.run_latest(KEY, older, slow))
        await started.wait()

        assert await gate.run_latest(KEY, newer, fast) == (True, 450.0)
        assert await first == (False, None)

    @pytest.mark.asyncio
    async def test_finished_operation_is_not_carried(self, gate) -> None:
        async def operation(watched):
            return watched

        await gate.run_latest(KEY, 450.0, operation)

        assert await gate.run_latest(KEY, 300.0, operation) == (True, 300.0)

    @pytest.mark.asyncio
    async def test_errors_propagate(self, gate) -> None:
        async def failing(watched):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await gate.run_latest(KEY, 0.0, failing)

    @pytest.mark.asyncio
    async def test_other_keys_are_not_cancelled(self, gate) -> None:
        started = asyncio.Event()

        async def slow(watched):
            started.set()
            await asyncio.sleep(0.01)
            return "a"

        async def other(watched):
            return "b"

        first = asyncio.create_task(gate.run_latest(("learner", "a"), 10.0, slow))
        await started.wait()
        assert await gate.run_latest(("learner", "b"), 20.0, other) == (True, "b")
        assert await first == (True, "a")
