"""Timer and mutual-exclusion primitives used by the autosave scheduler."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def now(self) -> float: ...


class LoopTimers:
    """Timers backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._resolve_loop().call_later(max(0.0, delay), callback)

    def now(self) -> float:
        return self._resolve_loop().time()


class _ManualHandle:
    def __init__(self, due: float) -> None:
        self.due = due
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Fake clock: callbacks fire only when :meth:`advance` moves time past them."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, _ManualHandle, Callable[[], None]]] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualHandle(self._now + max(0.0, delay))
        heapq.heappush(self._queue, (handle.due, next(self._counter), handle, callback))
        return handle

    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due callbacks in order. Returns how many fired."""
        deadline = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= deadline:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            callback()
            fired += 1
        self._now = deadline
        return fired


class DebounceTimer:
    """A single cancellable timer slot: arming replaces any pending firing."""

    def __init__(self, timers: Timers) -> None:
        self._timers = timers
        self._handle: TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()

        def _fire() -> None:
            self._handle = None
            callback()

        self._handle = self._timers.call_later(delay, _fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class SingleFlight:
    """Non-blocking guard allowing at most one holder at a time.

    The holder keeps it across an ``await``, so :meth:`try_acquire` must stay
    non-blocking: a blocking acquire on the loop thread would deadlock the
    event loop while the save it waits for can never resume.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


__all__ = [
    "DebounceTimer",
    "LoopTimers",
    "ManualTimers",
    "SingleFlight",
    "TimerHandle",
    "Timers",
]
