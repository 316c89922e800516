from __future__ import annotations

import asyncio
import heapq
import itertools
from datetime import datetime, timezone
from typing import Callable, Protocol

from voxturn.telemetry.logging import get_logger

LOGGER = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock:
    """Event-loop clock used for the debounce and grace timers."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        if seconds < 0:
            raise ValueError("Delay must be non-negative")
        LOGGER.debug("clock.call_later", seconds=seconds)
        return asyncio.get_running_loop().call_later(seconds, callback)


class _ManualHandle:
    __slots__ = ("when", "callback", "cancelled")

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock(Clock):
    """Logical clock; timers fire only when ``advance`` moves time past them."""

    def __init__(self, start: float = 0.0) -> None:
        self._time = start
        self._seq = itertools.count()
        self._timers: list[tuple[float, int, _ManualHandle]] = []

    def monotonic(self) -> float:
        return self._time

    def call_later(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        if seconds < 0:
            raise ValueError("Delay must be non-negative")
        handle = _ManualHandle(self._time + seconds, callback)
        heapq.heappush(self._timers, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> None:
        target = self._time + seconds
        while self._timers and self._timers[0][0] <= target:
            when, _, handle = heapq.heappop(self._timers)
            self._time = when
            if not handle.cancelled:
                handle.callback()
        self._time = target

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._timers if not handle.cancelled)


CLOCK = Clock()


__all__ = ["Clock", "ManualClock", "TimerHandle", "CLOCK"]
