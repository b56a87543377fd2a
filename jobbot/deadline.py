"""Per-application time budget checked at every browser suspension point."""
from __future__ import annotations

import time
from typing import Callable

from jobbot.errors import ApplicationTimeout


class Deadline:
    """Cooperative cancellation token.

    Every browser wait is clamped to the remaining budget and every step
    boundary calls `check()`, so an application that overruns stops at the
    next suspension point instead of running on in the background.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires

    def check(self) -> None:
        if self.expired():
            raise ApplicationTimeout(self.seconds)

    def clamp_ms(self, timeout_ms: float) -> float:
        """Playwright timeout (ms) bounded by what is left of the budget."""
        self.check()
        return max(1.0, min(float(timeout_ms), self.remaining() * 1000.0))

    def sleep(self, seconds: float, sleep: Callable[[float], None] = time.sleep) -> None:
        self.check()
        sleep(max(0.0, min(seconds, self.remaining())))
        self.check()
