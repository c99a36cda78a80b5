"""Engine configuration.

All tunables live in one ``EngineConfig`` tree that is passed explicitly into
the components that need it. Defaults are defined here; ``load_config`` reads
a YAML file and overlays any keys it sets.

Example config.yaml::

    rate:
      rps: 8
    adjuster:
      max_concurrency: 40
      initial_concurrency: 10
    retry:
      max_retries: 4
      inter_pass_delay_secs: 20
    probe:
      endpoint: https://api.example.com/simulate
    alert:
      enabled: true
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError


@dataclass(frozen=True)
class RateConfig:
    rps: float = 10.0
    capacity: Optional[float] = None
    tick_secs: float = 0.005


@dataclass(frozen=True)
class AdjusterConfig:
    min_concurrency: int = 2
    max_concurrency: int = 50
    initial_concurrency: int = 10
    window_size: int = 100
    adjust_interval_secs: float = 4.0
    high_threshold: float = 0.92
    low_threshold: float = 0.75
    raise_step: int = 2
    shrink_factor: float = 0.7


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    inter_pass_delay_secs: float = 15.0
    # None keeps the ceiling inherited from the previous pass
    retry_ceiling: Optional[int] = 4
    backoff_base_secs: float = 1.0
    backoff_max_secs: float = 30.0


@dataclass(frozen=True)
class ProbeConfig:
    endpoint: str = "https://api.phantom.app/simulation/v1?language=en"
    timeout_secs: float = 20.0
    impersonate: str = "chrome120"
    network_id: str = "solana:101"
    markers: Dict[str, str] = field(default_factory=dict)
    session_invalid_markers: List[str] = field(default_factory=list)
    unknown_default: str = "unknown"
    client_error_verdict: str = "transient_error"


@dataclass(frozen=True)
class SessionConfig:
    header_url: str = ""
    refresh_interval_secs: float = 600.0
    timeout_secs: float = 10.0


@dataclass(frozen=True)
class AlertConfig:
    enabled: bool = False
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    api_base: str = "https://api.telegram.org"
    queue_size: int = 1000
    timeout_secs: float = 10.0


@dataclass(frozen=True)
class OutputConfig:
    directory: str = "."
    success_file: str = "whitelisted.txt"
    blocked_file: str = "blocked.txt"
    failed_file: str = "failed.txt"
    unknown_file: str = "unknown.txt"
    # "unknown" writes UNKNOWN verdicts to unknown_file, "drop" only counts them
    unknown_bucket: str = "unknown"


@dataclass(frozen=True)
class EngineConfig:
    rate: RateConfig = field(default_factory=RateConfig)
    adjuster: AdjusterConfig = field(default_factory=AdjusterConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    alert: AlertConfig = field(default_factory=AlertConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    deadline_secs: Optional[float] = None

    def validate(self) -> "EngineConfig":
        a = self.adjuster
        if a.min_concurrency < 1 or a.max_concurrency < a.min_concurrency:
            raise ConfigError("adjuster: require 1 <= min_concurrency <= max_concurrency")
        if not 0.0 <= a.low_threshold <= a.high_threshold <= 1.0:
            raise ConfigError("adjuster: require 0 <= low_threshold <= high_threshold <= 1")
        if self.retry.max_retries < 0:
            raise ConfigError("retry.max_retries must be >= 0")
        if self.output.unknown_bucket not in ("unknown", "drop"):
            raise ConfigError("output.unknown_bucket must be 'unknown' or 'drop'")
        return self


def _overlay(base: Any, values: Dict[str, Any], path: str) -> Any:
    if not isinstance(values, dict):
        raise ConfigError(f"{path or 'config'}: expected a mapping")
    known = {f.name: f for f in fields(base)}
    updates: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown config key: {path}{key}")
        current = getattr(base, key)
        if is_dataclass(current):
            updates[key] = _overlay(current, value or {}, f"{path}{key}.")
        else:
            updates[key] = value
    return replace(base, **updates)


def load_config(config_path: str | Path | None = None) -> EngineConfig:
    """Load an EngineConfig, overlaying the YAML file at ``config_path`` on the defaults.

    Telegram credentials fall back to ALLOWSCAN_TELEGRAM_TOKEN and
    ALLOWSCAN_TELEGRAM_CHAT_ID when the file does not set them."""
    config = EngineConfig()
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML parse error: {e}") from e
        config = _overlay(config, raw, "")

    alert = config.alert
    alert = replace(
        alert,
        bot_token=alert.bot_token or os.environ.get("ALLOWSCAN_TELEGRAM_TOKEN"),
        chat_id=alert.chat_id or os.environ.get("ALLOWSCAN_TELEGRAM_CHAT_ID"),
    )
    return replace(config, alert=alert).validate()
