from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Verdict(str, Enum):
    SUCCESS = "success"
    BLOCKED = "blocked"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value

    @property
    def is_retryable(self) -> bool:
        """True for verdicts that send the identifier to the next pass."""
        return self in (Verdict.RATE_LIMITED, Verdict.TRANSIENT_ERROR)

    @property
    def is_success_signal(self) -> bool:
        """True when the service answered normally (counts as success for throughput)."""
        return not self.is_retryable


@dataclass(frozen=True)
class ProbeOutcome:
    identifier: str
    verdict: Verdict
    status_code: Optional[int] = None
    latency_ms: int = 0
    error_type: Optional[str] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class AttemptRecord:
    identifier: str
    pass_number: int
    timestamp: float
    verdict: Verdict


@dataclass(frozen=True)
class AdjusterSnapshot:
    successes: int
    failures: int
    success_rate: float
    ceiling: int
    timestamp: float


@dataclass
class RunStats:
    """Counters for one orchestrator run. Mutated from a single thread only."""

    processed: int = 0
    succeeded: int = 0
    blocked: int = 0
    failed: int = 0
    unknown: int = 0
    rate_limited: int = 0
    retries: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def elapsed(self) -> float:
        return time.time() - self.started_at

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "blocked": self.blocked,
            "failed": self.failed,
            "unknown": self.unknown,
            "rate_limited": self.rate_limited,
            "retries": self.retries,
            "elapsed_secs": round(self.elapsed, 2),
        }


@dataclass
class RunReport:
    succeeded: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    permanently_failed: List[str] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)
    unprocessed: List[str] = field(default_factory=list)
    passes: int = 0
    cancelled: bool = False
    stats: RunStats = field(default_factory=RunStats)
