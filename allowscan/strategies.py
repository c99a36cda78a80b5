from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .models import AdjusterSnapshot

if TYPE_CHECKING:
    from .adjuster import ThroughputAdjuster


class ControlStrategy(ABC):
    """Abstract base class for concurrency ceiling strategies.

    Each strategy evaluates an AdjusterSnapshot and decides whether
    to move the adjuster's ceiling."""

    @abstractmethod
    def should_apply(self, snapshot: AdjusterSnapshot) -> bool:
        """Return True if this strategy should be activated given current outcomes."""
        raise NotImplementedError

    @abstractmethod
    def apply(self, adjuster: "ThroughputAdjuster", snapshot: AdjusterSnapshot) -> None:
        """Execute the strategy's adjustment on the adjuster."""
        raise NotImplementedError


class ShrinkCeilingStrategy(ControlStrategy):
    """Cuts the ceiling multiplicatively when the success rate drops below the low threshold."""

    def __init__(self, low_threshold: float = 0.75, factor: float = 0.7, min_limit: int = 1, min_samples: int = 1) -> None:
        if not 0 < factor < 1:
            raise ValueError("factor must be in (0, 1)")
        self._low = low_threshold
        self._factor = factor
        self._min_limit = min_limit
        self._min_samples = min_samples

    def should_apply(self, snapshot: AdjusterSnapshot) -> bool:
        """Activate when enough outcomes are in and the success rate is below threshold."""
        if snapshot.successes + snapshot.failures < self._min_samples:
            return False
        return snapshot.success_rate < self._low and snapshot.ceiling > self._min_limit

    def apply(self, adjuster: "ThroughputAdjuster", snapshot: AdjusterSnapshot) -> None:
        """Shrink by the configured factor, always by at least one, respecting the minimum."""
        shrunk = min(snapshot.ceiling - 1, int(snapshot.ceiling * self._factor))
        adjuster.set_ceiling(max(self._min_limit, shrunk))


class RaiseCeilingStrategy(ControlStrategy):
    """Raises the ceiling additively when the success rate is above the high threshold."""

    def __init__(self, high_threshold: float = 0.92, step: int = 2, max_limit: int = 50, min_samples: int = 1) -> None:
        if step <= 0:
            raise ValueError("step must be positive")
        self._high = high_threshold
        self._step = step
        self._max_limit = max_limit
        self._min_samples = min_samples

    def should_apply(self, snapshot: AdjusterSnapshot) -> bool:
        """Activate when the success rate is above threshold and there is headroom."""
        if snapshot.successes + snapshot.failures < self._min_samples:
            return False
        return snapshot.success_rate > self._high and snapshot.ceiling < self._max_limit

    def apply(self, adjuster: "ThroughputAdjuster", snapshot: AdjusterSnapshot) -> None:
        """Increase the ceiling by the step, respecting the maximum."""
        adjuster.set_ceiling(min(self._max_limit, snapshot.ceiling + self._step))
