"""Sliding-window request limiter for one provider."""

import time
from collections import deque
from collections.abc import Callable

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Allows at most ``limit_per_minute`` acquisitions in any 60 second window.

    A limit of None disables limiting. Acquisition never waits: callers get
    False and decide what to do.
    """

    def __init__(
        self,
        limit_per_minute: int | None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit_per_minute = limit_per_minute
        self._clock = clock
        self._stamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= WINDOW_SECONDS:
            self._stamps.popleft()

    def try_acquire(self) -> bool:
        """Record one request if under the limit; return whether it was allowed."""
        if self.limit_per_minute is None:
            return True
        now = self._clock()
        self._prune(now)
        if len(self._stamps) >= self.limit_per_minute:
            return False
        self._stamps.append(now)
        return True

    def remaining(self) -> int | None:
        if self.limit_per_minute is None:
            return None
        self._prune(self._clock())
        return max(0, self.limit_per_minute - len(self._stamps))

    def retry_after(self) -> float:
        """Seconds until the oldest request leaves the window (0 when a slot is free)."""
        if self.limit_per_minute is None:
            return 0.0
        now = self._clock()
        self._prune(now)
        if len(self._stamps) < self.limit_per_minute:
            return 0.0
        return WINDOW_SECONDS - (now - self._stamps[0])
