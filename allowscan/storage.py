from __future__ import annotations

import logging
import os
import queue
import threading
from abc import ABC, abstractmethod
from typing import Dict, IO, List, Optional, Tuple

logger = logging.getLogger(__name__)

SUCCESS = "success"
BLOCKED = "blocked"
FAILED = "failed"
UNKNOWN = "unknown"
CATEGORIES = (SUCCESS, BLOCKED, FAILED, UNKNOWN)


class SinkBase(ABC):
    """Abstract base class for terminal result sinks.

    Subclasses must implement write() and close(); an identifier is written
    to exactly one category."""

    @abstractmethod
    def write(self, category: str, identifier: str) -> None:
        """Record one identifier under a terminal category."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending writes and release resources."""


class TextFileSinks(SinkBase):
    """Append-only text files, one identifier per line, written by a background thread.

    All files are opened in append mode up front so earlier runs' results
    are never overwritten."""

    def __init__(self, paths: Dict[str, str]) -> None:
        unknown = set(paths) - set(CATEGORIES)
        if unknown:
            raise ValueError(f"Unknown sink categories: {sorted(unknown)}")
        self._files: Dict[str, IO[str]] = {}
        try:
            for category, path in paths.items():
                directory = os.path.dirname(path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                self._files[category] = open(path, "a", encoding="utf-8")
        except OSError:
            self._close_files()
            raise
        self._queue: "queue.Queue[Optional[Tuple[str, str]]]" = queue.Queue()
        self._thread = threading.Thread(target=self._writer, name="sink-writer", daemon=True)
        self._thread.start()

    def write(self, category: str, identifier: str) -> None:
        """Enqueue an identifier for background writing."""
        if category not in self._files:
            raise KeyError(f"No sink configured for category {category!r}")
        self._queue.put((category, identifier))

    def close(self) -> None:
        """Signal the writer thread to flush and stop, then close the files."""
        self._queue.put(None)
        self._thread.join(timeout=10)
        self._close_files()

    def _writer(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            category, identifier = item
            f = self._files[category]
            try:
                f.write(identifier + "\n")
                f.flush()
            except OSError as exc:
                logger.error("Failed to write %s to %s sink: %s", identifier, category, exc)

    def _close_files(self) -> None:
        for f in self._files.values():
            try:
                f.close()
            except OSError as exc:
                logger.error("Failed to close sink file %s: %s", f.name, exc)


class MemorySinks(SinkBase):
    """Keeps written identifiers in lists; used for dry runs and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records: Dict[str, List[str]] = {c: [] for c in CATEGORIES}
        self.closed = False

    def write(self, category: str, identifier: str) -> None:
        with self._lock:
            self.records[category].append(identifier)

    def close(self) -> None:
        self.closed = True
