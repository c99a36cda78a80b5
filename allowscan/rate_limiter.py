from __future__ import annotations

import threading
import time
from typing import Optional


class RateLimiter:
    """Thread-safe token-bucket rate limiter based on requests per second.

    Tokens refill continuously at ``rps`` per second up to ``capacity``
    (one second of burst by default). acquire() polls on a short fixed tick
    until a token can be debited."""

    def __init__(self, rps: float, capacity: Optional[float] = None, tick_secs: float = 0.005) -> None:
        self._rps = float(rps)
        self._capacity = float(capacity) if capacity is not None else max(self._rps, 1.0)
        self._tick = tick_secs
        self._lock = threading.Lock()
        self._tokens = self._capacity
        self._last_refill = time.monotonic()

    def acquire(self, stop_event: Optional[threading.Event] = None) -> bool:
        """Block until a token is available and debit it.

        Returns False without debiting if ``stop_event`` is set while waiting."""
        if self._rps <= 0:
            return True
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return True
            if stop_event is not None:
                if stop_event.wait(self._tick):
                    return False
            else:
                time.sleep(self._tick)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._last_refill = now
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rps)

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    @property
    def capacity(self) -> float:
        return self._capacity
