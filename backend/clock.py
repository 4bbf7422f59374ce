"""Time source and cancellable timers for the job engine and health tracking.

All scheduling goes through a Clock so that components can be driven by a
manual clock in tests. Timers are daemon threads; a callback that raises is
logged and does not stop a repeating timer.
"""

import logging
import threading
import time
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


class TimerHandle:
    """Handle returned by Clock.call_later / Clock.call_every."""

    def __init__(self, name: str):
        self.name = name
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()


class _DelayedCall(threading.Thread):
    def __init__(self, handle: TimerHandle, clock: "Clock", delay: float, callback):
        super().__init__(name=f"timer-{handle.name}", daemon=True)
        self._handle = handle
        self._clock = clock
        self._delay = max(0.0, delay)
        self._callback = callback

    def run(self):
        if self._handle._cancelled.wait(self._delay):
            return
        try:
            self._callback()
        except Exception:
            logger.exception("Timer callback %s failed", self._handle.name)


class _RepeatingCall(threading.Thread):
    """Fixed-rate ticks; missed ticks are dropped, not replayed."""

    def __init__(self, handle: TimerHandle, clock: "Clock", period: float, callback):
        super().__init__(name=f"interval-{handle.name}", daemon=True)
        self._handle = handle
        self._clock = clock
        self._period = period
        self._callback = callback

    def run(self):
        next_at = self._clock.monotonic() + self._period
        while True:
            wait = next_at - self._clock.monotonic()
            if self._handle._cancelled.wait(max(0.0, wait)):
                return
            try:
                self._callback()
            except Exception:
                logger.exception("Interval callback %s failed", self._handle.name)
            next_at += self._period
            now = self._clock.monotonic()
            if next_at <= now:
                skipped = int((now - next_at) // self._period) + 1
                next_at += skipped * self._period


class Clock:
    """Wall and monotonic time plus thread-backed timers."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)

    def now_iso(self) -> str:
        return self.now().isoformat()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def call_later(self, delay: float, callback, name: str = "timer") -> TimerHandle:
        """Run callback once after delay seconds unless cancelled first."""
        handle = TimerHandle(name)
        _DelayedCall(handle, self, delay, callback).start()
        return handle

    def call_every(self, period: float, callback, name: str = "interval") -> TimerHandle:
        """Run callback every period seconds, first tick one period from now."""
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        handle = TimerHandle(name)
        _RepeatingCall(handle, self, period, callback).start()
        return handle


_default_clock = Clock()


def get_clock() -> Clock:
    """Return the process-wide real clock."""
    return _default_clock
