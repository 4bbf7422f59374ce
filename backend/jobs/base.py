"""Base class for job bodies.

A job body is any callable taking an ExecutionContext. BaseJob adds the
pieces the built-in jobs share: a Flask app context around the run (the
repositories use the scoped db session) and provider lookups.
"""

import logging
from abc import ABC, abstractmethod

from jobs.context import ExecutionContext
from providers import get_provider_client
from providers.base import ProviderConfig

logger = logging.getLogger(__name__)


class BaseJob(ABC):
    """Job body bound to a Flask app.

    Args:
        app: Flask application whose context the body runs in.
        client_factory: provider type -> ProviderClient (shared clients by default).
    """

    name: str = ""
    # True if execute() honours ExecutionContext.provider_id
    provider_scoped: bool = False

    def __init__(self, app, *, client_factory=get_provider_client):
        self.app = app
        self._client_factory = client_factory

    def __call__(self, ctx: ExecutionContext):
        with self.app.app_context():
            return self.execute(ctx)

    @abstractmethod
    def execute(self, ctx: ExecutionContext):
        """Run the job. Returns a JSON-serialisable result."""

    def enabled_providers(self, provider_id: str = None) -> list[ProviderConfig]:
        """Enabled providers in priority order, or just provider_id when given."""
        from db.repositories.providers import ProviderRepository

        rows = ProviderRepository().list_enabled()
        if provider_id is not None:
            rows = [p for p in rows if p["id"] == provider_id]
        return [ProviderConfig.from_dict(p) for p in rows]

    def client_for(self, provider: ProviderConfig):
        return self._client_factory(provider.type)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"
