from __future__ import annotations

import random


class BackoffStrategy:
    """Exponential backoff with jitter for rate-limit delays.

    Computes sleep duration as base * 2^(attempt-1) plus random jitter,
    capped at a configurable maximum. The cap is applied after jitter so
    delays never shrink as the attempt count grows."""

    def __init__(self, base_seconds: float = 1.0, max_seconds: float = 30.0, jitter_ratio: float = 0.1) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._jitter_ratio = jitter_ratio

    def get_sleep(self, attempt: int) -> float:
        """Calculate the backoff sleep duration in seconds for a given attempt."""
        if attempt <= 0:
            return 0.0
        exp = min(self._max, self._base * (2 ** (attempt - 1)))
        jitter = random.uniform(0, exp * self._jitter_ratio) if self._jitter_ratio > 0 else 0.0
        return min(self._max, exp + jitter)

    @property
    def max_seconds(self) -> float:
        return self._max
