from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Iterable, Optional

from .metrics import OutcomeWindows
from .models import AdjusterSnapshot
from .strategies import ControlStrategy

logger = logging.getLogger(__name__)


class ThroughputAdjuster:
    """Owns the concurrency ceiling and moves it based on recent success rate.

    maybe_adjust() is cheap to call before every admission; it evaluates the
    strategies at most once per ``adjust_interval_secs`` and applies the first
    one that matches. The ceiling is always clamped to
    [min_concurrency, max_concurrency]."""

    def __init__(
        self,
        windows: OutcomeWindows,
        strategies: Iterable[ControlStrategy],
        min_concurrency: int = 1,
        max_concurrency: int = 50,
        initial_concurrency: Optional[int] = None,
        adjust_interval_secs: float = 4.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_concurrency < 1 or max_concurrency < min_concurrency:
            raise ValueError("require 1 <= min_concurrency <= max_concurrency")
        self._windows = windows
        self._strategies = list(strategies)
        self._min = min_concurrency
        self._max = max_concurrency
        self._initial = self._clamp(initial_concurrency if initial_concurrency is not None else max_concurrency)
        self._interval = adjust_interval_secs
        self._clock = clock
        self._lock = threading.RLock()
        self._ceiling = self._initial
        self._last_adjust = clock()

    def record_success(self) -> None:
        self._windows.record_success()

    def record_failure(self) -> None:
        self._windows.record_failure()

    def success_rate(self) -> float:
        return self._windows.success_rate()

    def snapshot(self) -> AdjusterSnapshot:
        successes, failures = self._windows.counts()
        total = successes + failures
        return AdjusterSnapshot(
            successes=successes,
            failures=failures,
            success_rate=successes / total if total else 1.0,
            ceiling=self.ceiling,
            timestamp=time.time(),
        )

    def maybe_adjust(self) -> bool:
        """Apply at most one strategy if the adjustment interval has elapsed.

        Returns True when the ceiling changed."""
        with self._lock:
            now = self._clock()
            if now - self._last_adjust < self._interval:
                return False
            self._last_adjust = now
            return self._apply_strategies(self.snapshot())

    def _apply_strategies(self, snapshot: AdjusterSnapshot) -> bool:
        """Evaluate each strategy in priority order and apply the first matching one."""
        for strat in self._strategies:
            if strat.should_apply(snapshot):
                old_limit = self._ceiling
                strat.apply(self, snapshot)
                new_limit = self._ceiling
                log = {
                    "timestamp": snapshot.timestamp,
                    "strategy": strat.__class__.__name__,
                    "old_limit": old_limit,
                    "new_limit": new_limit,
                    "reason": {
                        "successes": snapshot.successes,
                        "failures": snapshot.failures,
                        "success_rate": round(snapshot.success_rate, 3),
                    },
                }
                logger.info(json.dumps(log, ensure_ascii=False))
                return new_limit != old_limit
        return False

    def set_ceiling(self, new_limit: int) -> tuple[int, int]:
        """Set the ceiling, clamped to the configured bounds."""
        with self._lock:
            old_limit = self._ceiling
            self._ceiling = self._clamp(int(new_limit))
            return old_limit, self._ceiling

    def reset(self, ceiling: Optional[int] = None) -> None:
        """Clear the outcome windows and restart the adjustment interval.

        The ceiling is reset to ``ceiling`` when given, otherwise left as is."""
        with self._lock:
            self._windows.clear()
            if ceiling is not None:
                self._ceiling = self._clamp(ceiling)
            self._last_adjust = self._clock()

    def _clamp(self, value: int) -> int:
        return max(self._min, min(self._max, value))

    @property
    def ceiling(self) -> int:
        with self._lock:
            return self._ceiling

    @property
    def initial_ceiling(self) -> int:
        return self._initial

    @property
    def bounds(self) -> tuple[int, int]:
        return self._min, self._max
