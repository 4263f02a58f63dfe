"""Request pacing for sidechain RPC nodes: token bucket plus capped exponential backoff."""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock


class TokenBucket:
    """Refills `rate` tokens per second up to `capacity`. Shared by every lookup on one client."""

    def __init__(
        self,
        rate: float = 10.0,
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
        self._tokens = float(self.capacity)
        self._stamp = clock()
        self._lock = Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._stamp) * self.rate)
        self._stamp = now

    def consume(self, n: int = 1) -> bool:
        """Take n tokens if available now."""
        with self._lock:
            self._refill()
            if self._tokens >= n:
                self._tokens -= n
                return True
            return False

    def wait_for_token(self, n: int = 1) -> float:
        """Block until n tokens are taken. Returns seconds spent waiting."""
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= n:
                    self._tokens -= n
                    return waited
                shortfall = (n - self._tokens) / self.rate
            self._sleep(shortfall)
            waited += shortfall


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay before retry `attempt` (0-based): base * 2^attempt, capped."""
    return min(max_delay, base_delay * (2**attempt))
