"""Tests for the WorkPool class."""

import threading
import time
import unittest

from allowscan.adjuster import ThroughputAdjuster
from allowscan.backoff import BackoffStrategy
from allowscan.metrics import OutcomeWindows
from allowscan.models import ProbeOutcome, Verdict
from allowscan.pool import WorkPool
from allowscan.rate_limiter import RateLimiter


def _make_pool(ceiling=3, max_concurrency=10, rps=0.0, backoff=None, stop_event=None):
    adjuster = ThroughputAdjuster(
        OutcomeWindows(),
        strategies=[],
        min_concurrency=1,
        max_concurrency=max_concurrency,
        initial_concurrency=ceiling,
        adjust_interval_secs=3600,
    )
    pool = WorkPool(RateLimiter(rps=rps), adjuster, backoff=backoff, stop_event=stop_event, poll_secs=0.01)
    return pool, adjuster


class ConcurrencyTracker:
    """Worker that records how many calls overlap."""

    def __init__(self, delay=0.02, verdict=Verdict.SUCCESS):
        self._delay = delay
        self._verdict = verdict
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0
        self.calls = []

    def __call__(self, identifier):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
            self.calls.append(identifier)
        time.sleep(self._delay)
        with self._lock:
            self.current -= 1
        return ProbeOutcome(identifier=identifier, verdict=self._verdict)


class TestWorkPool(unittest.TestCase):
    """Verify bounded concurrency, exactly-once processing, and draining."""

    def test_empty_input(self):
        pool, _ = _make_pool()
        self.assertEqual(pool.run([], ConcurrencyTracker()), [])

    def test_processes_every_item_once(self):
        pool, _ = _make_pool(ceiling=4)
        items = [f"https://d{i}.example" for i in range(25)]
        worker = ConcurrencyTracker()
        outcomes = pool.run(items, worker)
        self.assertEqual(sorted(o.identifier for o in outcomes), sorted(items))
        self.assertEqual(sorted(worker.calls), sorted(items))
        self.assertEqual(pool.in_flight, 0)

    def test_duplicates_are_processed_independently(self):
        pool, _ = _make_pool()
        outcomes = pool.run(["https://a.example"] * 3, ConcurrencyTracker(delay=0))
        self.assertEqual(len(outcomes), 3)

    def test_never_exceeds_ceiling(self):
        pool, _ = _make_pool(ceiling=3)
        worker = ConcurrencyTracker(delay=0.03)
        pool.run([str(i) for i in range(15)], worker)
        self.assertLessEqual(worker.peak, 3)
        self.assertLessEqual(pool.peak_in_flight, 3)

    def test_submits_in_input_order(self):
        pool, _ = _make_pool(ceiling=1)
        items = [str(i) for i in range(8)]
        worker = ConcurrencyTracker(delay=0)
        pool.run(items, worker)
        self.assertEqual(worker.calls, items)

    def test_ceiling_change_mid_run_is_respected(self):
        pool, adjuster = _make_pool(ceiling=5)
        worker = ConcurrencyTracker(delay=0.02)

        def shrink_after_start(identifier):
            if identifier == "3":
                adjuster.set_ceiling(1)
            return worker(identifier)

        pool.run([str(i) for i in range(20)], shrink_after_start)
        self.assertEqual(len(worker.calls), 20)
        self.assertEqual(adjuster.ceiling, 1)

    def test_completions_feed_adjuster(self):
        pool, adjuster = _make_pool()
        verdicts = iter([Verdict.SUCCESS, Verdict.BLOCKED, Verdict.TRANSIENT_ERROR, Verdict.RATE_LIMITED])

        lock = threading.Lock()

        def worker(identifier):
            with lock:
                verdict = next(verdicts)
            return ProbeOutcome(identifier=identifier, verdict=verdict)

        pool.run(["a", "b", "c", "d"], worker)
        snapshot = adjuster.snapshot()
        self.assertEqual((snapshot.successes, snapshot.failures), (2, 2))

    def test_worker_exception_becomes_transient(self):
        pool, _ = _make_pool()

        def worker(identifier):
            raise RuntimeError("boom")

        outcomes = pool.run(["a"], worker)
        self.assertIs(outcomes[0].verdict, Verdict.TRANSIENT_ERROR)
        self.assertEqual(outcomes[0].error_type, "RuntimeError")
        self.assertEqual(pool.in_flight, 0)

    def test_on_result_runs_on_calling_thread(self):
        pool, _ = _make_pool(ceiling=4)
        threads = set()

        def on_result(outcome):
            threads.add(threading.get_ident())

        pool.run([str(i) for i in range(10)], ConcurrencyTracker(delay=0.01), on_result=on_result)
        self.assertEqual(threads, {threading.get_ident()})

    def test_rate_limiter_gates_admission(self):
        pool, _ = _make_pool(ceiling=10, rps=20.0)
        start = time.monotonic()
        pool.run([str(i) for i in range(30)], ConcurrencyTracker(delay=0))
        # 20 burst tokens then 10 more at 20 rps
        self.assertGreaterEqual(time.monotonic() - start, 0.4)

    def test_consecutive_rate_limits_grow_backoff(self):
        backoff = BackoffStrategy(base_seconds=0.001, max_seconds=0.008)
        pool, _ = _make_pool(ceiling=1, backoff=backoff)
        pool.run([str(i) for i in range(8)], ConcurrencyTracker(delay=0, verdict=Verdict.RATE_LIMITED))
        delays = pool.backoff_delays
        self.assertEqual(len(delays), 8)
        for prev, cur in zip(delays, delays[1:]):
            self.assertLessEqual(prev, cur)
        self.assertLessEqual(max(delays), 0.008)

    def test_non_rate_limited_verdict_resets_backoff(self):
        backoff = BackoffStrategy(base_seconds=0.001, max_seconds=1.0, jitter_ratio=0.0)
        pool, _ = _make_pool(ceiling=1, backoff=backoff)
        verdicts = {"0": Verdict.RATE_LIMITED, "1": Verdict.RATE_LIMITED, "2": Verdict.SUCCESS, "3": Verdict.RATE_LIMITED}

        def worker(identifier):
            return ProbeOutcome(identifier=identifier, verdict=verdicts[identifier])

        pool.run(["0", "1", "2", "3"], worker)
        self.assertEqual(pool.backoff_delays, [0.001, 0.002, 0.001])

    def test_stop_event_halts_admission_and_drains(self):
        stop = threading.Event()
        pool, _ = _make_pool(ceiling=2, stop_event=stop)
        worker = ConcurrencyTracker(delay=0.05)

        def stopping_worker(identifier):
            if identifier == "1":
                stop.set()
            return worker(identifier)

        items = [str(i) for i in range(20)]
        outcomes = pool.run(items, stopping_worker)
        self.assertTrue(pool.unadmitted)
        admitted = len(outcomes)
        self.assertEqual(admitted + len(pool.unadmitted), 20)
        self.assertEqual({o.identifier for o in outcomes}, set(items[:admitted]))
        self.assertEqual(pool.unadmitted, items[admitted:])
        self.assertEqual(pool.in_flight, 0)


if __name__ == "__main__":
    unittest.main()
