"""
Fixed-Interval Rate Limiting
Keeps probing controlled and observable by spacing requests evenly.
"""
import time
import logging
from typing import Callable

logger = logging.getLogger("uasf.throttler")


class RateLimiter:
    """
    Fixed-interval limiter: sleeps 1/rps seconds before every request.

    This is not a token bucket. There is no burst smoothing and no credit for
    idle time; each call to throttle() costs the full interval. rps = 0 disables
    the delay entirely.
    """

    def __init__(self, rps: int, sleep: Callable[[float], None] = time.sleep):
        if isinstance(rps, bool) or not isinstance(rps, int) or rps < 0:
            raise ValueError(f"rps must be a non-negative integer, got {rps!r}")
        self.rps = rps
        self._sleep = sleep
        self.calls = 0

    @property
    def interval(self) -> float:
        """Seconds slept per request."""
        if self.rps == 0:
            return 0.0
        return 1.0 / self.rps

    def throttle(self):
        self.calls += 1
        if self.rps > 0:
            self._sleep(self.interval)

    def describe(self) -> str:
        if self.rps == 0:
            return "unlimited"
        return f"{self.rps} requests/second"
