from __future__ import annotations

import datetime as _dt
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Best-effort alert channel. notify() must never raise or block the caller."""

    @abstractmethod
    def notify(self, identifier: str) -> None:
        ...

    def close(self) -> None:
        """Flush what can be flushed and stop background work."""


class NullNotifier(Notifier):
    def notify(self, identifier: str) -> None:
        return None


class TelegramNotifier(Notifier):
    """Sends a chat message per whitelisted identifier from a bounded background queue.

    When the queue is full the alert is dropped with a warning; delivery
    failures are logged and otherwise ignored."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        api_base: str = "https://api.telegram.org",
        queue_size: int = 1000,
        timeout: float = 10.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._url = f"{api_base}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._timeout = timeout
        self._http = http or requests.Session()
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=queue_size)
        self.sent = 0
        self.dropped = 0
        self._thread = threading.Thread(target=self._sender, name="telegram-notifier", daemon=True)
        self._thread.start()

    def notify(self, identifier: str) -> None:
        try:
            self._queue.put_nowait(identifier)
        except queue.Full:
            self.dropped += 1
            logger.warning("Alert queue full, dropping notification for %s", identifier)

    def close(self, timeout: float = 10.0) -> None:
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("Alert queue still full at shutdown, pending notifications abandoned")
            return
        self._thread.join(timeout=timeout)

    def _sender(self) -> None:
        while True:
            identifier = self._queue.get()
            if identifier is None:
                break
            text = f"✅ WHITELISTED\n{identifier}\n{_dt.datetime.now(_dt.timezone.utc).isoformat()}"
            try:
                resp = self._http.post(self._url, json={"chat_id": self._chat_id, "text": text}, timeout=self._timeout)
                resp.raise_for_status()
                self.sent += 1
            except Exception as exc:  # noqa: BLE001
                logger.warning("Telegram notification for %s failed: %s", identifier, exc)
