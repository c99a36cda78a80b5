from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Deque, Dict


class OutcomeWindows:
    """Thread-safe pair of bounded sliding windows of outcome timestamps.

    Each window keeps at most ``capacity`` entries; the oldest is evicted
    on overflow."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._lock = Lock()
        self._successes: Deque[float] = deque(maxlen=capacity)
        self._failures: Deque[float] = deque(maxlen=capacity)

    def record_success(self) -> None:
        with self._lock:
            self._successes.append(time.time())

    def record_failure(self) -> None:
        with self._lock:
            self._failures.append(time.time())

    def counts(self) -> tuple[int, int]:
        with self._lock:
            return len(self._successes), len(self._failures)

    def success_rate(self) -> float:
        """Fraction of successes in the windows; 1.0 when both are empty."""
        successes, failures = self.counts()
        total = successes + failures
        if total == 0:
            return 1.0
        return successes / total

    def clear(self) -> None:
        with self._lock:
            self._successes.clear()
            self._failures.clear()

    def export_json(self) -> Dict[str, list]:
        """Export the raw timestamps of both windows."""
        with self._lock:
            return {"successes": list(self._successes), "failures": list(self._failures)}

    @property
    def capacity(self) -> int:
        return self._capacity
