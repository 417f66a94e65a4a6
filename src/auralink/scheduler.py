"""Schedulable clock used for every connection timer.

Production code runs timers on the asyncio loop. Tests drive a
:class:`VirtualScheduler` and advance time explicitly.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections.abc import Callable
from typing import Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Minimal timer interface shared by the loop-backed and virtual clocks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def time(self) -> float:
        """Wall-clock epoch seconds."""
        ...


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later``."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay, callback)

    def time(self) -> float:
        return time.time()


class _VirtualTimer:
    __slots__ = ("when", "callback", "cancelled")

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler whose clock only moves on :meth:`advance`.

    Timers due at the same instant fire in the order they were scheduled.
    Callbacks may schedule further timers; those fire within the same
    ``advance`` call when they fall inside the advanced interval.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, _VirtualTimer]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _VirtualTimer:
        timer = _VirtualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    def time(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        """Number of scheduled, not yet cancelled timers."""
        return sum(1 for _when, _seq, timer in self._queue if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _seq, timer = heapq.heappop(self._queue)
            self._now = max(self._now, when)
            if not timer.cancelled:
                timer.callback()
        self._now = target
