"""Read-mostly snapshot of provider configuration for request-time lookups.

Stream selection runs on every playback request and must not hit the
database for each candidate. The directory loads all providers once and
serves lookups from memory until invalidate() is called (provider CRUD,
syncProviderDetails).
"""

import logging
import threading

from providers.base import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderDirectory:
    """Cached provider_id -> ProviderConfig map.

    Args:
        loader: Callable returning provider dicts (ProviderRepository row
                format), deleted and disabled providers included.
    """

    def __init__(self, loader):
        self._loader = loader
        self._lock = threading.Lock()
        self._providers: dict[str, ProviderConfig] | None = None

    def _snapshot(self) -> dict[str, ProviderConfig]:
        providers = self._providers
        if providers is not None:
            return providers
        with self._lock:
            if self._providers is None:
                loaded = {}
                for row in self._loader():
                    config = ProviderConfig.from_dict(row)
                    loaded[config.id] = config
                self._providers = loaded
                logger.debug("Provider directory loaded: %d providers", len(loaded))
            return self._providers

    def get(self, provider_id: str) -> ProviderConfig | None:
        return self._snapshot().get(provider_id)

    def usable(self) -> list[ProviderConfig]:
        return [p for p in self._snapshot().values() if p.usable]

    def invalidate(self) -> None:
        with self._lock:
            self._providers = None
        logger.debug("Provider directory invalidated")
