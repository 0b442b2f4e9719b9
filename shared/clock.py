"""
Injectable wall clock.

Token and session expiry are compared in epoch milliseconds. Components take a
``Clock`` so tests can drive time explicitly.
"""

import time


class Clock:
    """Wall clock returning epoch milliseconds."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class FakeClock(Clock):
    """Manually advanced clock for tests and simulations."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def advance(self, seconds: float = 0, minutes: float = 0) -> int:
        self._now += int((seconds + minutes * 60) * 1000)
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms


system_clock = Clock()
