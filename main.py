from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from typing import List, Optional, Sequence

from allowscan import storage
from allowscan.adjuster import ThroughputAdjuster
from allowscan.backoff import BackoffStrategy
from allowscan.config import EngineConfig, load_config
from allowscan.errors import AllowscanError, InputFileError, OutputFileError
from allowscan.metrics import OutcomeWindows
from allowscan.notifier import Notifier, NullNotifier, TelegramNotifier
from allowscan.orchestrator import RetryOrchestrator
from allowscan.policy import ClassificationPolicy
from allowscan.pool import WorkPool
from allowscan.probe import BaseProbe, SimulationProbe
from allowscan.rate_limiter import RateLimiter
from allowscan.session import SessionProvider
from allowscan.storage import SinkBase, TextFileSinks
from allowscan.strategies import RaiseCeilingStrategy, ShrinkCeilingStrategy

logger = logging.getLogger("allowscan.main")

SHARD_WIDTH = 4
DEFAULT_SCHEME = "https://"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    root = logging.getLogger("allowscan")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(logging.Formatter(fmt="%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
    root.addHandler(sh)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fh = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        fh.setFormatter(logging.Formatter(fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(fh)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return root


def shard_file_name(shard: str) -> str:
    """part_0007.txt for shard "7" or "07"."""
    return f"part_{shard.zfill(SHARD_WIDTH)}.txt"


def normalize_identifier(line: str) -> Optional[str]:
    value = line.strip()
    if not value:
        return None
    if not value.startswith(("http://", "https://")):
        return DEFAULT_SCHEME + value
    return value


def load_identifiers(path: str) -> List[str]:
    identifiers: List[str] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                ident = normalize_identifier(line)
                if ident:
                    identifiers.append(ident)
    except OSError as exc:
        raise InputFileError(f"Cannot read identifier list {path}: {exc}") from exc
    return identifiers


def build_orchestrator(
    config: EngineConfig,
    probe: BaseProbe,
    sinks: SinkBase,
    notifier: Optional[Notifier] = None,
    stop_event: Optional[threading.Event] = None,
) -> RetryOrchestrator:
    a = config.adjuster
    adjuster = ThroughputAdjuster(
        OutcomeWindows(capacity=a.window_size),
        strategies=[
            ShrinkCeilingStrategy(low_threshold=a.low_threshold, factor=a.shrink_factor, min_limit=a.min_concurrency),
            RaiseCeilingStrategy(high_threshold=a.high_threshold, step=a.raise_step, max_limit=a.max_concurrency),
        ],
        min_concurrency=a.min_concurrency,
        max_concurrency=a.max_concurrency,
        initial_concurrency=a.initial_concurrency,
        adjust_interval_secs=a.adjust_interval_secs,
    )
    rate_limiter = RateLimiter(rps=config.rate.rps, capacity=config.rate.capacity, tick_secs=config.rate.tick_secs)
    backoff = BackoffStrategy(base_seconds=config.retry.backoff_base_secs, max_seconds=config.retry.backoff_max_secs)
    pool = WorkPool(rate_limiter, adjuster, backoff=backoff, stop_event=stop_event)
    return RetryOrchestrator(
        pool,
        adjuster,
        probe.run,
        sinks,
        notifier=notifier,
        max_retries=config.retry.max_retries,
        inter_pass_delay_secs=config.retry.inter_pass_delay_secs,
        retry_ceiling=config.retry.retry_ceiling,
        unknown_bucket=config.output.unknown_bucket,
        deadline_secs=config.deadline_secs,
    )


def build_sinks(config: EngineConfig) -> TextFileSinks:
    out = config.output
    paths = {
        storage.SUCCESS: os.path.join(out.directory, out.success_file),
        storage.BLOCKED: os.path.join(out.directory, out.blocked_file),
        storage.FAILED: os.path.join(out.directory, out.failed_file),
    }
    if out.unknown_bucket == "unknown":
        paths[storage.UNKNOWN] = os.path.join(out.directory, out.unknown_file)
    try:
        return TextFileSinks(paths)
    except OSError as exc:
        raise OutputFileError(f"Cannot open result files in {out.directory}: {exc}") from exc


def build_notifier(config: EngineConfig) -> Notifier:
    alert = config.alert
    if not alert.enabled:
        return NullNotifier()
    if not alert.bot_token or not alert.chat_id:
        logger.warning("Alerts enabled but bot token or chat id is missing; alerts disabled")
        return NullNotifier()
    return TelegramNotifier(
        alert.bot_token,
        alert.chat_id,
        api_base=alert.api_base,
        queue_size=alert.queue_size,
        timeout=alert.timeout_secs,
    )


def _shard_arg(value: str) -> str:
    if not value.isdigit():
        raise argparse.ArgumentTypeError(f"shard must be a number, got {value!r}")
    return value


def _apply_overrides(config: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    if args.rps is not None:
        config = replace(config, rate=replace(config.rate, rps=args.rps))
    if args.max_concurrency is not None:
        adjuster = replace(
            config.adjuster,
            max_concurrency=args.max_concurrency,
            initial_concurrency=min(config.adjuster.initial_concurrency, args.max_concurrency),
            min_concurrency=min(config.adjuster.min_concurrency, args.max_concurrency),
        )
        config = replace(config, adjuster=adjuster)
    if args.max_retries is not None:
        config = replace(config, retry=replace(config.retry, max_retries=args.max_retries))
    if args.output_dir is not None:
        config = replace(config, output=replace(config.output, directory=args.output_dir))
    if args.header_url is not None:
        config = replace(config, session=replace(config.session, header_url=args.header_url))
    if args.deadline is not None:
        config = replace(config, deadline_secs=args.deadline)
    return config.validate()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Classify a shard of domains against the simulation service")
    parser.add_argument("-xx", "--shard", required=True, type=_shard_arg, help="Shard index, e.g. 07 reads part_0007.txt")
    parser.add_argument("--config", "-c", default=None, help="YAML config file")
    parser.add_argument("--input-dir", default=".", help="Directory holding part_NNNN.txt files")
    parser.add_argument("--output-dir", default=None, help="Directory for result files")
    parser.add_argument("--header-url", default=None, help="Session header service URL")

    parser.add_argument("--rps", type=float, default=None, help="Global requests-per-second limit")
    parser.add_argument("--max-concurrency", type=int, default=None, help="Upper bound for in-flight probes")
    parser.add_argument("--max-retries", type=int, default=None, help="Retry passes for transient failures")
    parser.add_argument("--deadline", type=float, default=None, help="Stop admitting work after this many seconds")

    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", default=None, help="Optional rotating log file")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    sinks: Optional[TextFileSinks] = None

    try:
        config = _apply_overrides(load_config(args.config), args)
        path = os.path.join(args.input_dir, shard_file_name(args.shard))
        identifiers = load_identifiers(path)
        logger.info("Loaded %d identifiers from %s", len(identifiers), path)
        if not identifiers:
            logger.info("Nothing to do")
            return 0
        policy = ClassificationPolicy.from_config(config.probe)
        sinks = build_sinks(config)

        session = SessionProvider(
            config.session.header_url,
            refresh_interval_secs=config.session.refresh_interval_secs,
            timeout=config.session.timeout_secs,
        )
        session.start()
    except AllowscanError as exc:
        logger.error("%s", exc)
        if sinks is not None:
            sinks.close()
        return 1

    probe = SimulationProbe(
        session,
        endpoint=config.probe.endpoint,
        timeout=config.probe.timeout_secs,
        impersonate=config.probe.impersonate,
        network_id=config.probe.network_id,
        policy=policy,
    )
    notifier = build_notifier(config)
    orchestrator = build_orchestrator(config, probe, sinks, notifier)

    interrupted = threading.Event()

    def _on_sigint(signum, frame) -> None:
        if interrupted.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupted, finishing in-flight probes (Ctrl+C again to abort)")
        interrupted.set()
        orchestrator.stop()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        report = orchestrator.execute(identifiers)
    finally:
        signal.signal(signal.SIGINT, previous)
        session.stop()
        notifier.close()
        sinks.close()

    logger.info(
        "DONE: whitelisted=%d blocked=%d failed=%d unknown=%d unprocessed=%d passes=%d",
        len(report.succeeded), len(report.blocked), len(report.permanently_failed),
        len(report.unknown), len(report.unprocessed), report.passes,
    )
    if interrupted.is_set():
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
