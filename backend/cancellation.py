"""Cooperative cancellation shared by job bodies, provider calls and probes."""

import logging
import threading

from error_handler import JobCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag with callbacks.

    Callbacks registered with on_cancel run exactly once, on the thread that
    calls cancel(); if the token is already cancelled they run immediately.
    """

    def __init__(self, parent: "CancellationToken | None" = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks = []
        self.reason: str | None = None
        if parent is not None:
            parent.on_cancel(lambda: self.cancel(parent.reason or "cancelled"))

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Flip the token. Returns False if it was already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")
        return True

    def on_cancel(self, callback) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout. Returns True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(f"Cancelled: {self.reason}", context={"reason": self.reason})
