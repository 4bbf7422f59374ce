"""IPTV provider system: one client class per provider dialect.

Clients are registered by provider type and shared process-wide; they hold
an HTTP session but no per-provider state.

Usage:
    from providers import get_provider_client

    client = get_provider_client(provider.type)
    items = client.fetch_catalog(token, provider, "movies")
"""

import logging
import threading

from error_handler import ConfigurationError

logger = logging.getLogger(__name__)

# Provider registry: maps provider type to client class
_CLIENT_CLASSES: dict[str, type] = {}

_clients: dict[str, object] = {}
_clients_lock = threading.Lock()


def register_provider(cls):
    """Decorator to register a provider client class.

    First registration wins on type collision; the duplicate is logged and
    skipped.
    """
    if cls.provider_type in _CLIENT_CLASSES:
        logger.warning(
            "Provider type collision: '%s' already registered by %s, skipping %s",
            cls.provider_type,
            _CLIENT_CLASSES[cls.provider_type].__name__,
            cls.__name__,
        )
        return cls
    _CLIENT_CLASSES[cls.provider_type] = cls
    return cls


def _load_builtin_clients() -> None:
    from providers import agtv, xtream  # noqa: F401


def get_registered_types() -> list[str]:
    _load_builtin_clients()
    return sorted(_CLIENT_CLASSES)


def get_provider_client(provider_type: str):
    """Get or create the shared client for a provider type (thread-safe).

    Raises:
        ConfigurationError: No client is registered for the type.
    """
    client = _clients.get(provider_type)
    if client is not None:
        return client
    _load_builtin_clients()
    with _clients_lock:
        client = _clients.get(provider_type)
        if client is None:
            cls = _CLIENT_CLASSES.get(provider_type)
            if cls is None:
                raise ConfigurationError(
                    f"Unknown provider type: {provider_type}",
                    context={"provider_type": provider_type},
                )
            client = cls()
            _clients[provider_type] = client
    return client


def get_probe_method(provider_type: str) -> str:
    """HTTP method stream probes use for a provider type (GET if unknown)."""
    _load_builtin_clients()
    cls = _CLIENT_CLASSES.get(provider_type)
    return getattr(cls, "probe_method", "GET") if cls else "GET"
