"""Tests for the ThroughputAdjuster class."""

import random
import unittest

from allowscan.adjuster import ThroughputAdjuster
from allowscan.metrics import OutcomeWindows
from allowscan.strategies import RaiseCeilingStrategy, ShrinkCeilingStrategy


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


def _make_adjuster(clock: FakeClock, initial: int = 10, low: int = 2, high: int = 30) -> ThroughputAdjuster:
    return ThroughputAdjuster(
        OutcomeWindows(capacity=20),
        strategies=[
            ShrinkCeilingStrategy(low_threshold=0.75, factor=0.5, min_limit=low),
            RaiseCeilingStrategy(high_threshold=0.92, step=2, max_limit=high),
        ],
        min_concurrency=low,
        max_concurrency=high,
        initial_concurrency=initial,
        adjust_interval_secs=4.0,
        clock=clock,
    )


class TestThroughputAdjuster(unittest.TestCase):
    """Verify interval gating, direction of response, and clamping."""

    def setUp(self):
        self.clock = FakeClock()
        self.adjuster = _make_adjuster(self.clock)

    def test_no_adjustment_before_interval(self):
        for _ in range(10):
            self.adjuster.record_success()
        self.assertFalse(self.adjuster.maybe_adjust())
        self.assertEqual(self.adjuster.ceiling, 10)

    def test_raises_on_high_success_rate(self):
        for _ in range(10):
            self.adjuster.record_success()
        self.clock.advance(4.0)
        self.assertTrue(self.adjuster.maybe_adjust())
        self.assertEqual(self.adjuster.ceiling, 12)

    def test_shrinks_on_low_success_rate(self):
        for _ in range(5):
            self.adjuster.record_success()
        for _ in range(5):
            self.adjuster.record_failure()
        self.clock.advance(4.0)
        self.assertTrue(self.adjuster.maybe_adjust())
        self.assertEqual(self.adjuster.ceiling, 5)

    def test_holds_between_thresholds(self):
        for _ in range(17):
            self.adjuster.record_success()
        for _ in range(3):
            self.adjuster.record_failure()
        self.clock.advance(4.0)
        self.assertFalse(self.adjuster.maybe_adjust())
        self.assertEqual(self.adjuster.ceiling, 10)

    def test_at_most_one_change_per_interval(self):
        for _ in range(10):
            self.adjuster.record_success()
        self.clock.advance(4.0)
        self.adjuster.maybe_adjust()
        self.clock.advance(1.0)
        self.assertFalse(self.adjuster.maybe_adjust())
        self.assertEqual(self.adjuster.ceiling, 12)

    def test_success_rate_defaults_to_one(self):
        self.assertEqual(self.adjuster.success_rate(), 1.0)
        self.assertEqual(self.adjuster.snapshot().success_rate, 1.0)

    def test_set_ceiling_clamps(self):
        self.adjuster.set_ceiling(1000)
        self.assertEqual(self.adjuster.ceiling, 30)
        self.adjuster.set_ceiling(-5)
        self.assertEqual(self.adjuster.ceiling, 2)

    def test_reset_clears_windows_and_sets_ceiling(self):
        for _ in range(5):
            self.adjuster.record_failure()
        self.adjuster.reset(ceiling=4)
        self.assertEqual(self.adjuster.ceiling, 4)
        self.assertEqual(self.adjuster.snapshot().failures, 0)

    def test_reset_without_ceiling_keeps_current(self):
        self.adjuster.set_ceiling(17)
        self.adjuster.reset()
        self.assertEqual(self.adjuster.ceiling, 17)

    def test_reset_restarts_interval(self):
        for _ in range(10):
            self.adjuster.record_success()
        self.clock.advance(3.0)
        self.adjuster.reset()
        for _ in range(10):
            self.adjuster.record_success()
        self.clock.advance(3.0)
        self.assertFalse(self.adjuster.maybe_adjust())

    def test_ceiling_stays_in_bounds_for_random_outcomes(self):
        rng = random.Random(1234)
        for _ in range(2000):
            if rng.random() < rng.choice([0.2, 0.5, 0.95]):
                self.adjuster.record_success()
            else:
                self.adjuster.record_failure()
            self.clock.advance(rng.uniform(0.0, 3.0))
            self.adjuster.maybe_adjust()
            self.assertGreaterEqual(self.adjuster.ceiling, 2)
            self.assertLessEqual(self.adjuster.ceiling, 30)

    def test_initial_defaults_to_maximum(self):
        adjuster = ThroughputAdjuster(OutcomeWindows(), strategies=[], min_concurrency=1, max_concurrency=8)
        self.assertEqual(adjuster.ceiling, 8)
        self.assertEqual(adjuster.bounds, (1, 8))

    def test_rejects_inverted_bounds(self):
        with self.assertRaises(ValueError):
            ThroughputAdjuster(OutcomeWindows(), strategies=[], min_concurrency=5, max_concurrency=2)


if __name__ == "__main__":
    unittest.main()
