"""Adaptive throughput engine for classifying domains against a rate-limited service.

Provides the admission limiter, feedback-driven concurrency control, the
bounded work pool, the multi-pass retry orchestrator, and the pluggable
probe, sink, and alert collaborators around them.

Key modules:
    models          -- Verdict, ProbeOutcome, AttemptRecord, RunStats, RunReport
    config          -- EngineConfig dataclasses and YAML loader
    errors          -- Fatal error hierarchy
    rate_limiter    -- RateLimiter token bucket
    backoff         -- BackoffStrategy for local rate-limit delays
    metrics         -- OutcomeWindows sliding success/failure windows
    strategies      -- ControlStrategy and the raise/shrink ceiling strategies
    adjuster        -- ThroughputAdjuster owning the concurrency ceiling
    policy          -- ClassificationPolicy mapping responses to verdicts
    session         -- SessionProvider for the probe's auth headers
    probe           -- BaseProbe and SimulationProbe
    pool            -- WorkPool bounded concurrent execution
    orchestrator    -- RetryOrchestrator multi-pass runs
    storage         -- SinkBase, TextFileSinks, MemorySinks
    notifier        -- Notifier, TelegramNotifier
"""

__version__ = "0.1.0"
