from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

from . import storage
from .adjuster import ThroughputAdjuster
from .models import AttemptRecord, ProbeOutcome, RunReport, Verdict
from .notifier import Notifier, NullNotifier
from .pool import WorkPool
from .storage import SinkBase

logger = logging.getLogger(__name__)


class RetryOrchestrator:
    """Runs identifiers through the WorkPool in passes until each one is terminal.

    Pass 0 covers every identifier. Identifiers with a retryable verdict
    form the next pass's input, after an inter-pass pause and an adjuster
    reset. Once ``max_retries`` retry passes are spent, whatever still fails
    goes to the failed sink, once per identifier.

    Sinks, stats and the notifier are only touched from the thread calling
    execute(); the pool delivers outcomes back to it.
    """

    def __init__(
        self,
        pool: WorkPool,
        adjuster: ThroughputAdjuster,
        probe: Callable[[str], ProbeOutcome],
        sinks: SinkBase,
        notifier: Optional[Notifier] = None,
        max_retries: int = 3,
        inter_pass_delay_secs: float = 15.0,
        retry_ceiling: Optional[int] = None,
        unknown_bucket: str = "unknown",
        deadline_secs: Optional[float] = None,
    ) -> None:
        if unknown_bucket not in ("unknown", "drop"):
            raise ValueError("unknown_bucket must be 'unknown' or 'drop'")
        self._pool = pool
        self._adjuster = adjuster
        self._probe = probe
        self._sinks = sinks
        self._notifier = notifier or NullNotifier()
        self._max_retries = max_retries
        self._inter_pass_delay = inter_pass_delay_secs
        self._retry_ceiling = retry_ceiling
        self._unknown_bucket = unknown_bucket
        self._deadline = deadline_secs
        self._stop = pool.stop_event

    def stop(self) -> None:
        """Stop admitting work; in-flight probes finish and execute() returns a partial report."""
        self._stop.set()

    def execute(self, items: Sequence[str]) -> RunReport:
        report = RunReport()
        pending: List[str] = list(items)
        pass_number = 0
        exhausted = False

        timer: Optional[threading.Timer] = None
        if self._deadline is not None:
            timer = threading.Timer(self._deadline, self._on_deadline)
            timer.daemon = True
            timer.start()

        try:
            while pending:
                if pass_number > 0:
                    if pass_number > self._max_retries:
                        exhausted = True
                        break
                    logger.info(
                        "Retry pass %d/%d for %d identifiers in %.1fs",
                        pass_number, self._max_retries, len(pending), self._inter_pass_delay,
                    )
                    if self._stop.wait(self._inter_pass_delay):
                        break
                    report.stats.retries += len(pending)
                    self._adjuster.reset(ceiling=self._retry_ceiling)

                failures: List[str] = []
                total = len(pending)
                pass_started = time.time()
                seen_before = report.stats.processed

                def on_result(outcome: ProbeOutcome, _pass: int = pass_number) -> None:
                    index = report.stats.processed - seen_before + 1
                    self._dispatch(outcome, _pass, index, total, failures, report)

                self._pool.run(pending, self._probe, on_result=on_result)
                report.passes += 1
                logger.info(
                    "Pass %d done in %.1fs: %d attempted, %d to retry, ceiling=%d",
                    pass_number, time.time() - pass_started, total - len(self._pool.unadmitted),
                    len(failures), self._adjuster.ceiling,
                )

                if self._pool.unadmitted:
                    report.unprocessed.extend(self._pool.unadmitted)
                    pending = failures
                    exhausted = pass_number >= self._max_retries
                    break
                pending = failures
                pass_number += 1
        finally:
            if timer is not None:
                timer.cancel()

        if self._stop.is_set():
            report.cancelled = True
        if exhausted:
            for identifier in pending:
                self._terminal(storage.FAILED, identifier)
                report.permanently_failed.append(identifier)
                report.stats.failed += 1
            if pending:
                logger.warning("%d identifiers exhausted %d retries", len(pending), self._max_retries)
        else:
            # only a stop leaves retryable work behind
            report.unprocessed.extend(pending)

        logger.info("Run finished: %s", report.stats.as_dict())
        return report

    def _dispatch(
        self,
        outcome: ProbeOutcome,
        pass_number: int,
        index: int,
        total: int,
        failures: List[str],
        report: RunReport,
    ) -> None:
        stats = report.stats
        stats.processed += 1
        record = AttemptRecord(
            identifier=outcome.identifier,
            pass_number=pass_number,
            timestamp=time.time(),
            verdict=outcome.verdict,
        )
        logger.debug("%s", record)

        verdict = outcome.verdict
        if verdict is Verdict.SUCCESS:
            self._terminal(storage.SUCCESS, outcome.identifier)
            report.succeeded.append(outcome.identifier)
            stats.succeeded += 1
            self._alert(outcome.identifier)
        elif verdict is Verdict.BLOCKED:
            self._terminal(storage.BLOCKED, outcome.identifier)
            report.blocked.append(outcome.identifier)
            stats.blocked += 1
        elif verdict is Verdict.PERMANENT_ERROR:
            self._terminal(storage.FAILED, outcome.identifier)
            report.permanently_failed.append(outcome.identifier)
            stats.failed += 1
        elif verdict is Verdict.UNKNOWN:
            if self._unknown_bucket == "unknown":
                self._terminal(storage.UNKNOWN, outcome.identifier)
            report.unknown.append(outcome.identifier)
            stats.unknown += 1
        else:
            if verdict is Verdict.RATE_LIMITED:
                stats.rate_limited += 1
            failures.append(outcome.identifier)

        logger.info(
            "[pass %d %d/%d] %s → %s%s",
            pass_number,
            index,
            total,
            verdict.value,
            outcome.identifier,
            f" ({outcome.error_type})" if outcome.error_type else "",
        )

    def _terminal(self, category: str, identifier: str) -> None:
        try:
            self._sinks.write(category, identifier)
        except Exception as exc:  # noqa: BLE001
            logger.error("Sink write failed for %s (%s): %s", identifier, category, exc)

    def _alert(self, identifier: str) -> None:
        try:
            self._notifier.notify(identifier)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Notifier raised for %s: %s", identifier, exc)

    def _on_deadline(self) -> None:
        logger.warning("Run deadline of %.1fs reached, stopping admission", self._deadline)
        self._stop.set()
