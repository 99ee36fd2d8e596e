"""Request pacing for paginated REST/GraphQL fetches."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable


class TokenBucket:
    """Refills `rate` tokens per second up to `capacity`; one token per page request.

    Safe to share between threads; refills happen under a lock.
    """

    def __init__(
        self,
        rate: float = 2.0,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = capacity or max(1, int(rate * 2))
        self._clock = clock
        self._sleep = sleep
        self._available = float(self.capacity)
        self._refilled_at = clock()
        self._lock = Lock()

    def _deficit(self, n: int) -> float:
        """Take n tokens and return 0, or return how many are still missing."""
        with self._lock:
            now = self._clock()
            self._available = min(self.capacity, self._available + (now - self._refilled_at) * self.rate)
            self._refilled_at = now
            if self._available >= n:
                self._available -= n
                return 0.0
            return n - self._available

    def consume(self, n: int = 1) -> bool:
        """Take n tokens if they are available right now."""
        return self._deficit(n) == 0.0

    def wait_for_token(self, n: int = 1, timeout: float | None = None) -> bool:
        """Sleep until n tokens can be taken. False if that would take longer than timeout."""
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            missing = self._deficit(n)
            if missing == 0.0:
                return True
            delay = missing / self.rate
            if deadline is not None and self._clock() + delay > deadline:
                return False
            self._sleep(delay)
