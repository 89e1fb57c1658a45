"""Millisecond clocks and sleepers.

Every governor component takes its notion of "now" from an injected clock
instead of calling the wall clock itself. In production the default
``monotonic_ms`` is immune to wall-clock adjustments; in tests a
``ManualClock`` makes refill, window expiry and recovery timeouts fully
deterministic.

Example:
    >>> clock = ManualClock()
    >>> clock()
    0.0
    >>> clock.advance(250)
    >>> clock()
    250.0
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any

Clock = Callable[[], float]
"""Zero-argument callable returning the current time in milliseconds."""

Sleeper = Callable[[float], None]
"""Blocking sleep taking seconds, like ``time.sleep``."""

AsyncSleeper = Callable[[float], Awaitable[Any]]
"""Awaitable sleep taking seconds, like ``asyncio.sleep``."""


def monotonic_ms() -> float:
    """Return a monotonic timestamp in milliseconds."""
    return time.monotonic() * 1000.0


class ManualClock:
    """Clock that only moves when told to.

    Doubles as a sync and async sleeper: sleeping advances the clock by the
    requested duration instead of blocking, and the request is recorded in
    ``sleeps`` (seconds).
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self._now

    def advance(self, ms: float) -> None:
        """Move time forward by ``ms`` milliseconds."""
        if ms < 0:
            raise ValueError(f"Cannot advance clock by negative amount: {ms}")
        self._now += ms

    def set(self, ms: float) -> None:
        """Jump to an absolute time. May move backwards."""
        self._now = float(ms)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds * 1000.0)

    async def sleep_async(self, seconds: float) -> None:
        self.sleep(seconds)

    def __repr__(self) -> str:
        return f"ManualClock(now={self._now})"


__all__ = ["Clock", "Sleeper", "AsyncSleeper", "monotonic_ms", "ManualClock"]
