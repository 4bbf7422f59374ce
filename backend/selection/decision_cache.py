"""Short-lived per-user memo of the winning source for a title.

Entries expire after a TTL and are dropped early when their provider
records a fresh material error. The cache is bounded: on overflow expired
entries go first, then the least recently written.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass

from clock import Clock, get_clock

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0
DEFAULT_MAX_ENTRIES = 1000


def make_cache_key(media_type: str, title_id: str, season=None, episode=None,
                   username: str = "") -> str:
    """``mediaType|titleId|season|episode|username`` (empty for missing parts)."""
    parts = [media_type, str(title_id),
             "" if season is None else str(season),
             "" if episode is None else str(episode),
             username]
    return "|".join(parts)


@dataclass(frozen=True)
class Decision:
    cache_key: str
    provider_id: str
    url: str
    timestamp: float  # clock.monotonic() at insertion


class DecisionCache:
    """Thread-safe TTL cache of selection decisions."""

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, max_entries: int = DEFAULT_MAX_ENTRIES,
                 clock: Clock = None):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock or get_clock()
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, Decision] = OrderedDict()

    def _expired(self, decision: Decision, now: float) -> bool:
        return now - decision.timestamp >= self.ttl

    def get(self, key: str) -> Decision | None:
        now = self._clock.monotonic()
        with self._lock:
            decision = self._entries.get(key)
            if decision is None:
                return None
            if self._expired(decision, now):
                del self._entries[key]
                return None
            return decision

    def put(self, key: str, provider_id: str, url: str) -> Decision:
        now = self._clock.monotonic()
        decision = Decision(key, provider_id, url, now)
        with self._lock:
            self._entries[key] = decision
            self._entries.move_to_end(key)
            if len(self._entries) > self.max_entries:
                self._purge_locked(now)
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
        return decision

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_provider(self, provider_id: str) -> int:
        with self._lock:
            keys = [k for k, d in self._entries.items() if d.provider_id == provider_id]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug("Invalidated %d cached decisions for provider %s", len(keys), provider_id)
        return len(keys)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock.monotonic())

    def _purge_locked(self, now: float) -> int:
        expired = [k for k, d in self._entries.items() if self._expired(d, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
