from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import requests

from .errors import SessionUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHeaders:
    nonce: str
    auth_token: str
    fetched_at: float


class SessionProvider:
    """Keeps a fresh nonce/auth pair for the probe endpoint.

    The pair is fetched from a header service at start(), refreshed by a
    background thread every ``refresh_interval_secs``, and refetched on demand
    after invalidate(). A failed refresh keeps the cached pair."""

    def __init__(
        self,
        header_url: str,
        refresh_interval_secs: float = 600.0,
        timeout: float = 10.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._url = header_url
        self._interval = refresh_interval_secs
        self._timeout = timeout
        self._http = http or requests.Session()
        self._lock = threading.Lock()
        self._refresh_lock = threading.RLock()
        self._attempts = 0
        self._headers: Optional[SessionHeaders] = None
        self._stale = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> SessionHeaders:
        """Fetch the first pair and start the refresh thread.

        Raises SessionUnavailableError if no pair can be obtained."""
        if not self._url:
            raise SessionUnavailableError("session.header_url is not configured")
        try:
            headers = self.refresh()
        except Exception as exc:  # noqa: BLE001
            raise SessionUnavailableError(f"Could not fetch session headers: {exc}") from exc
        self._stop.clear()
        self._thread = threading.Thread(target=self._refresh_loop, name="session-refresh", daemon=True)
        self._thread.start()
        return headers

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def headers(self) -> SessionHeaders:
        """Return the cached pair, refetching first if it was invalidated.

        Concurrent callers share one refetch: whoever gets the refresh lock
        first fetches, the rest reuse its result."""
        with self._lock:
            headers, stale, attempts = self._headers, self._stale, self._attempts
        if headers is not None and not stale:
            return headers

        with self._refresh_lock:
            with self._lock:
                headers, stale = self._headers, self._stale
                tried_meanwhile = self._attempts != attempts
            if headers is not None and (not stale or tried_meanwhile):
                return headers
            try:
                return self.refresh()
            except Exception as exc:  # noqa: BLE001
                if headers is None:
                    raise SessionUnavailableError(f"Could not fetch session headers: {exc}") from exc
                logger.warning("Session refresh failed, keeping cached headers: %s", exc)
        return headers

    def invalidate(self) -> None:
        with self._lock:
            self._stale = True

    def refresh(self) -> SessionHeaders:
        with self._refresh_lock:
            with self._lock:
                self._attempts += 1
            resp = self._http.get(self._url, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
            raw = payload.get("headers") or {}
            nonce = raw.get("phantomNonce")
            auth = raw.get("phantomAuth")
            if not nonce or not auth:
                raise ValueError("header service response is missing phantomNonce/phantomAuth")
            headers = SessionHeaders(nonce=nonce, auth_token=auth, fetched_at=time.time())
            with self._lock:
                self._headers = headers
                self._stale = False
        logger.info("Session headers refreshed")
        return headers

    def _refresh_loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.refresh()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Scheduled session refresh failed: %s", exc)
