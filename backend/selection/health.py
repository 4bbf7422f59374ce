"""Per-provider error and selection rings with time-based decay.

Only material failures (HTTP 502 and network errors recorded as 502) feed
load scoring; other status codes are kept for diagnostics.
"""

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass

from clock import Clock, get_clock

logger = logging.getLogger(__name__)

MATERIAL_STATUS = 502
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_RETENTION_SECONDS = 300.0
# Hard cap per ring so a provider failing thousands of times per minute
# cannot grow memory between sweeps.
MAX_EVENTS_PER_PROVIDER = 1000


@dataclass(frozen=True)
class ErrorEvent:
    timestamp: float  # clock.monotonic()
    status_code: int


class HealthTracker:
    """Thread-safe rolling health signals, keyed by provider id."""

    def __init__(self, clock: Clock = None, window: float = DEFAULT_WINDOW_SECONDS,
                 retention: float = DEFAULT_RETENTION_SECONDS):
        self._clock = clock or get_clock()
        self.window = window
        self.retention = retention
        self._lock = threading.Lock()
        self._errors: dict[str, deque] = defaultdict(lambda: deque(maxlen=MAX_EVENTS_PER_PROVIDER))
        self._selections: dict[str, deque] = defaultdict(lambda: deque(maxlen=MAX_EVENTS_PER_PROVIDER))
        self._listeners = []

    def add_error_listener(self, callback) -> None:
        """callback(provider_id, status_code) runs after every recorded error."""
        self._listeners.append(callback)

    def record_error(self, provider_id: str, status_code: int = MATERIAL_STATUS) -> None:
        with self._lock:
            self._errors[provider_id].append(ErrorEvent(self._clock.monotonic(), status_code))
        logger.debug("Provider %s error recorded (status=%s)", provider_id, status_code)
        for callback in self._listeners:
            callback(provider_id, status_code)

    def recent_errors(self, provider_id: str, status_code: int = MATERIAL_STATUS,
                      window: float = None) -> int:
        cutoff = self._clock.monotonic() - (self.window if window is None else window)
        with self._lock:
            ring = self._errors.get(provider_id)
            if not ring:
                return 0
            return sum(1 for e in ring if e.timestamp >= cutoff and e.status_code == status_code)

    def record_selection(self, provider_id: str) -> None:
        with self._lock:
            self._selections[provider_id].append(self._clock.monotonic())

    def recent_selections(self, provider_id: str, window: float = None) -> int:
        cutoff = self._clock.monotonic() - (self.window if window is None else window)
        with self._lock:
            ring = self._selections.get(provider_id)
            if not ring:
                return 0
            return sum(1 for ts in ring if ts >= cutoff)

    def error_counts(self) -> dict[str, int]:
        """Recent material error count for every provider with a ring."""
        with self._lock:
            providers = list(self._errors)
        return {p: self.recent_errors(p) for p in providers}

    def sweep(self, max_age: float = None) -> int:
        """Drop events older than max_age (default: retention). Returns count removed."""
        cutoff = self._clock.monotonic() - (self.retention if max_age is None else max_age)
        removed = 0
        with self._lock:
            for rings in (self._errors, self._selections):
                for provider_id in list(rings):
                    ring = rings[provider_id]
                    while ring and _ts(ring[0]) < cutoff:
                        ring.popleft()
                        removed += 1
                    if not ring:
                        del rings[provider_id]
        if removed:
            logger.debug("Health sweep removed %d stale events", removed)
        return removed

    def snapshot(self) -> dict:
        """Per-provider counts for diagnostics."""
        with self._lock:
            providers = set(self._errors) | set(self._selections)
        return {
            p: {
                "recent_502": self.recent_errors(p),
                "recent_selections": self.recent_selections(p),
            }
            for p in sorted(providers)
        }


def _ts(event) -> float:
    return event.timestamp if isinstance(event, ErrorEvent) else event
