from __future__ import annotations

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from curl_cffi import requests as curl_requests
from solders.keypair import Keypair

from .models import ProbeOutcome, Verdict
from .policy import ClassificationPolicy
from .session import SessionProvider

logger = logging.getLogger(__name__)

class BaseProbe(ABC):
    """Abstract base class defining a single classification attempt.

    run() never raises: every outcome, including an exception from fetch(),
    is normalised to a ProbeOutcome carrying exactly one Verdict.
    """

    def __init__(self, policy: Optional[ClassificationPolicy] = None) -> None:
        self._policy = policy or ClassificationPolicy()

    def run(self, identifier: str) -> ProbeOutcome:
        start_ms = self._now_ms()
        status_code = None

        try:
            self.validate(identifier)
            response = self.fetch(identifier)
            status_code = getattr(response, "status_code", None)
            body = self.read_body(response)

            if self._policy.is_session_invalid(status_code, body):
                self.on_session_invalid()
                return ProbeOutcome(
                    identifier=identifier,
                    verdict=Verdict.TRANSIENT_ERROR,
                    status_code=status_code,
                    latency_ms=self._now_ms() - start_ms,
                    error_type="SessionInvalid",
                )

            verdict = self._policy.classify(status_code, body)
            return ProbeOutcome(
                identifier=identifier,
                verdict=verdict,
                status_code=status_code,
                latency_ms=self._now_ms() - start_ms,
                error_type=None if verdict is not Verdict.TRANSIENT_ERROR else f"HTTP_{status_code}",
            )

        except Exception as exc:  # noqa: BLE001
            return ProbeOutcome(
                identifier=identifier,
                verdict=Verdict.TRANSIENT_ERROR,
                status_code=status_code,
                latency_ms=self._now_ms() - start_ms,
                error_type=type(exc).__name__,
                detail=str(exc)[:200],
            )

    def validate(self, identifier: str) -> None:
        if not identifier:
            raise ValueError("identifier is required")

    @abstractmethod
    def fetch(self, identifier: str) -> Any:
        ...

    def read_body(self, response: Any) -> Optional[str]:
        """Body text for marker matching. JSON bodies are re-serialised compactly
        with unicode unescaped, so markers match the decoded text."""
        try:
            text = getattr(response, "text", None)
        except Exception:  # noqa: BLE001
            return None
        if not text:
            return text
        try:
            return json.dumps(json.loads(text), ensure_ascii=False, separators=(",", ":"))
        except ValueError:
            return text

    def on_session_invalid(self) -> None:
        """Hook called when the response reports the session as no longer valid."""

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)


class SimulationProbe(BaseProbe):
    """Submits a transaction simulation for a site URL and classifies the warning text.

    Each call carries a fresh anonymous id and a throwaway account address
    together with the current session nonce/auth pair."""

    def __init__(
        self,
        session: SessionProvider,
        endpoint: str,
        timeout: float = 20.0,
        impersonate: str = "chrome120",
        network_id: str = "solana:101",
        *args,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._session = session
        self._endpoint = endpoint
        self._timeout = timeout
        self._impersonate = impersonate
        self._network_id = network_id

    def fetch(self, identifier: str) -> Any:
        headers = self._session.headers()
        return curl_requests.post(
            self._endpoint,
            json={
                "networkID": self._network_id,
                "type": "transaction",
                "url": identifier,
                "userAccount": _random_account(),
            },
            headers={
                "Content-Type": "application/json",
                "x-phantomauthtoken": headers.auth_token,
                "x-phantomnonce": headers.nonce,
                "x-phantom-anonymousid": str(uuid.uuid4()),
            },
            impersonate=self._impersonate,
            timeout=self._timeout,
        )

    def on_session_invalid(self) -> None:
        logger.warning("Probe reported an invalid session, forcing header refresh")
        self._session.invalidate()


def _random_account() -> str:
    """Public key of a fresh throwaway ed25519 keypair, base58 encoded."""
    return str(Keypair().pubkey())
