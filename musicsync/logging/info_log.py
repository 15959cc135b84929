"""Collector for informational findings shown once at the end of a run."""
from __future__ import annotations

import threading

from ..core.protocols import ProgressReporter


class InfoLog:
    """Thread-safe, insertion-ordered, deduplicated message list.

    Sanitization findings and ambiguous matches are not errors; printing
    them inline would interleave with the progress bar and repeat for
    every file of an album.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: dict[str, None] = {}

    def add(self, message: str) -> None:
        with self._lock:
            self._messages.setdefault(message, None)

    def messages(self) -> list[str]:
        with self._lock:
            return list(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def emit(self, progress: ProgressReporter) -> None:
        for message in self.messages():
            progress.info(message)
