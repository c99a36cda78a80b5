from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from .adjuster import ThroughputAdjuster
from .backoff import BackoffStrategy
from .models import ProbeOutcome, Verdict
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Worker = Callable[[str], ProbeOutcome]
ResultCallback = Callable[[ProbeOutcome], None]


class WorkPool:
    """Runs a worker over a batch of identifiers with a feedback-driven concurrency ceiling.

    Admission per item, in input order:
      1. RateLimiter.acquire()
      2. ThroughputAdjuster.maybe_adjust()
      3. wait while in-flight >= adjuster.ceiling

    Each completion feeds the adjuster before its slot is released. Outcomes
    are handed to ``on_result`` on the thread that called run(), so callers
    can keep their own bookkeeping single-threaded.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        adjuster: ThroughputAdjuster,
        backoff: Optional[BackoffStrategy] = None,
        max_workers: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        poll_secs: float = 0.05,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._adjuster = adjuster
        self._backoff = backoff
        self._max_workers = max_workers or adjuster.bounds[1]
        self._stop = stop_event or threading.Event()
        self._poll = poll_secs

        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._active = 0
        self._peak_active = 0
        self._consecutive_rate_limited = 0
        self._pending_backoff = 0.0
        self.backoff_delays: List[float] = []
        self.unadmitted: List[str] = []

        self._results: "queue.SimpleQueue[ProbeOutcome]" = queue.SimpleQueue()

    def run(self, items: Sequence[str], worker: Worker, on_result: Optional[ResultCallback] = None) -> List[ProbeOutcome]:
        """Process every item once and return outcomes in completion order.

        If the stop event is set, admission stops, in-flight work drains, and
        the items never started are left in ``self.unadmitted``."""
        with self._cv:
            self._consecutive_rate_limited = 0
            self._pending_backoff = 0.0
            self._peak_active = 0
            self.backoff_delays = []
        self.unadmitted = []
        outcomes: List[ProbeOutcome] = []
        submitted = 0

        def deliver(outcome: ProbeOutcome) -> None:
            outcomes.append(outcome)
            if on_result is not None:
                on_result(outcome)

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="probe") as executor:
            for index, item in enumerate(items):
                if not self._admit(deliver):
                    self.unadmitted = list(items[index:])
                    logger.warning("Admission stopped, %d items not started", len(self.unadmitted))
                    break
                executor.submit(self._wrap_task, worker, item)
                submitted += 1

            while len(outcomes) < submitted:
                deliver(self._results.get())

        return outcomes

    def _admit(self, deliver: ResultCallback) -> bool:
        self._drain(deliver)
        if self._stop.is_set():
            return False

        with self._cv:
            delay, self._pending_backoff = self._pending_backoff, 0.0
        if delay > 0:
            logger.info("Rate limited %d times in a row, pausing admission %.2fs", self._consecutive_rate_limited, delay)
            if self._stop.wait(delay):
                return False

        if not self._rate_limiter.acquire(self._stop):
            return False
        self._adjuster.maybe_adjust()

        while True:
            self._drain(deliver)
            with self._cv:
                if self._stop.is_set():
                    return False
                if self._active < self._adjuster.ceiling:
                    self._active += 1
                    self._peak_active = max(self._peak_active, self._active)
                    return True
                self._cv.wait(timeout=self._poll)

    def _drain(self, deliver: ResultCallback) -> None:
        while True:
            try:
                outcome = self._results.get_nowait()
            except queue.Empty:
                return
            deliver(outcome)

    def _wrap_task(self, worker: Worker, item: str) -> None:
        try:
            outcome = worker(item)
        except Exception as exc:  # noqa: BLE001
            outcome = ProbeOutcome(identifier=item, verdict=Verdict.TRANSIENT_ERROR, error_type=type(exc).__name__)

        if outcome.verdict.is_success_signal:
            self._adjuster.record_success()
        else:
            self._adjuster.record_failure()

        with self._cv:
            if outcome.verdict is Verdict.RATE_LIMITED and self._backoff is not None:
                self._consecutive_rate_limited += 1
                delay = self._backoff.get_sleep(self._consecutive_rate_limited)
                self._pending_backoff = max(self._pending_backoff, delay)
                self.backoff_delays.append(delay)
            elif outcome.verdict is not Verdict.RATE_LIMITED:
                self._consecutive_rate_limited = 0
            self._active = max(0, self._active - 1)
            self._cv.notify_all()

        self._results.put(outcome)

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    @property
    def in_flight(self) -> int:
        with self._cv:
            return self._active

    @property
    def peak_in_flight(self) -> int:
        with self._cv:
            return self._peak_active
