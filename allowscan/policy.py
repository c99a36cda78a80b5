from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Sequence, Tuple

from .errors import ConfigError
from .models import Verdict

if TYPE_CHECKING:
    from .config import ProbeConfig


@dataclass(frozen=True)
class MarkerRule:
    """Maps a literal substring of the response body to a verdict."""

    marker: str
    verdict: Verdict


DEFAULT_MARKER_RULES: Tuple[MarkerRule, ...] = (
    MarkerRule("This dApp could be malicious", Verdict.BLOCKED),
    MarkerRule("Receive < 0.00001 SOL", Verdict.SUCCESS),
    MarkerRule("No balance changes found", Verdict.SUCCESS),
    MarkerRule("User call limit exceeded", Verdict.RATE_LIMITED),
)


class ClassificationPolicy:
    """Total mapping from a raw probe response to a Verdict.

    Marker rules are checked in order against the body first, then the
    status code table, then ``default`` for unmatched successful responses.
    ``body`` may be None when the response could not be read."""

    def __init__(
        self,
        rules: Iterable[MarkerRule] = DEFAULT_MARKER_RULES,
        default: Verdict = Verdict.UNKNOWN,
        client_error_verdict: Verdict = Verdict.TRANSIENT_ERROR,
        session_invalid_markers: Sequence[str] = (),
    ) -> None:
        self._rules = list(rules)
        self._default = default
        self._client_error_verdict = client_error_verdict
        self._session_invalid_markers = list(session_invalid_markers)

    @classmethod
    def from_config(cls, config: "ProbeConfig") -> "ClassificationPolicy":
        """Build a policy from probe settings; configured markers replace the defaults."""
        try:
            rules = (
                [MarkerRule(marker, Verdict(verdict)) for marker, verdict in config.markers.items()]
                if config.markers
                else DEFAULT_MARKER_RULES
            )
            return cls(
                rules=rules,
                default=Verdict(config.unknown_default),
                client_error_verdict=Verdict(config.client_error_verdict),
                session_invalid_markers=config.session_invalid_markers,
            )
        except ValueError as e:
            raise ConfigError(f"probe: invalid verdict name: {e}") from e

    def classify(self, status_code: Optional[int], body: Optional[str]) -> Verdict:
        text = body or ""
        for rule in self._rules:
            if rule.marker and rule.marker in text:
                return rule.verdict

        if status_code is None:
            return Verdict.TRANSIENT_ERROR
        if status_code == 429:
            return Verdict.RATE_LIMITED
        if status_code == 408 or status_code >= 500:
            return Verdict.TRANSIENT_ERROR
        if status_code >= 400:
            return self._client_error_verdict
        return self._default

    def is_session_invalid(self, status_code: Optional[int], body: Optional[str]) -> bool:
        """True when the response says the auth/session pair is no longer accepted."""
        if status_code == 401:
            return True
        text = body or ""
        return any(marker in text for marker in self._session_invalid_markers)

    @property
    def rules(self) -> list[MarkerRule]:
        return list(self._rules)
