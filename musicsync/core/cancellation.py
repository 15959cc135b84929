"""Cooperative cancellation handle passed to every blocking operation."""
from __future__ import annotations

import threading
from typing import Optional

from .errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancellation flag.

    A token may be linked to a parent: cancelling the parent cancels
    every child, cancelling a child leaves the parent untouched. The
    pipeline uses this to abort a single run on its first fault without
    touching the caller's token.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._parent = parent

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.is_cancelled

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise OperationCancelled("Operation was cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds, returning early once cancelled."""
        if self._parent is None:
            return self._event.wait(timeout)
        # parent state is polled, so wake up periodically
        remaining = timeout
        while remaining > 0:
            step = min(remaining, 0.1)
            if self._event.wait(step) or self._parent.is_cancelled:
                return True
            remaining -= step
        return self.is_cancelled

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)
