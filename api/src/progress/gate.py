"""Per (learner, video) throttle and in-flight dedup gate.

Best-effort load shedding in front of the store: it limits how often routine
ticks reach the store and cancels merges superseded by a newer tick. The
newer tick carries the cancelled tick's watched time forward. It is
process-local, so several instances may each admit a tick inside the same
window; correctness never depends on it because store merges are monotonic.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class _GateEntry:
    touched_at: float
    last_applied_at: float | None = None
    in_flight: asyncio.Task | None = None
    pending_watched: float | None = None


class ThrottleGate:
    """Bounded, TTL-evicted map of throttle state keyed per learner+video."""

    def __init__(
        self,
        window_seconds: float,
        ttl_seconds: float = 300.0,
        max_keys: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.ttl_seconds = ttl_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._entries: OrderedDict[Hashable, _GateEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def admit(self, key: Hashable, flush: bool = False) -> bool:
        """Decide whether a tick may reach the store.

        Routine ticks inside the throttle window are dropped; flush ticks
        always pass. An admitted tick restarts the window.
        """
        now = self._clock()
        self._prune(now)
        entry = self._touch(key, now)

        if (
            not flush
            and entry.last_applied_at is not None
            and now - entry.last_applied_at < self.window_seconds
        ):
            return False

        entry.last_applied_at = now
        return True

    def release(self, key: Hashable) -> None:
        """Reopen the window after a failed merge so the next tick passes."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.last_applied_at = None

    async def run_latest(
        self,
        key: Hashable,
        watched_seconds: float,
        operation: Callable[[float], Awaitable[T]],
    ) -> tuple[bool, T | None]:
        """Run ``operation`` as the key's in-flight merge.

        A previous in-flight merge for the same key is cancelled and its
        watched time is carried over: ``operation`` receives the larger of
        ``watched_seconds`` and the cancelled merge's value, so a superseded
        tick never loses progress. Returns ``(True, result)`` when the
        operation finished, ``(False, None)`` when a newer tick superseded it.
        Errors raised by the operation propagate.
        """
        entry = self._touch(key, self._clock())

        watched = watched_seconds
        previous = entry.in_flight
        if previous is not None and not previous.done():
            previous.cancel()
            if entry.pending_watched is not None:
                watched = max(watched, entry.pending_watched)
            logger.debug(
                "progress_inflight_superseded", key=str(key), watched_seconds=watched
            )

        task = asyncio.ensure_future(operation(watched))
        entry.in_flight = task
        entry.pending_watched = watched
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if entry.in_flight is task:
                entry.in_flight = None
                entry.pending_watched = None

        if task.cancelled():
            return False, None
        return True, task.result()

    def _touch(self, key: Hashable, now: float) -> _GateEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _GateEntry(touched_at=now)
            self._entries[key] = entry
        else:
            entry.touched_at = now
            self._entries.move_to_end(key)
        return entry

    def _prune(self, now: float) -> None:
        # Entries are ordered by last touch, oldest first
        while self._entries:
            key, entry = next(iter(self._entries.items()))
            expired = now - entry.touched_at >= self.ttl_seconds
            if not expired and len(self._entries) < self.max_keys:
                break
            del self._entries[key]
