"""syncProviderDetails: refresh account status of every enabled provider."""

import logging
from datetime import UTC, datetime, timedelta

from db.repositories.providers import ProviderRepository
from error_handler import JobCancelledError, PlayarrError
from jobs.base import BaseJob

logger = logging.getLogger(__name__)

# AGTV accounts change rarely and the login endpoint is rate limited
AGTV_REFRESH_AFTER = timedelta(days=1)


def _is_stale(details: dict, now: datetime) -> bool:
    last_checked = details.get("last_checked")
    if not details.get("expiration_date") or not last_checked:
        return True
    try:
        checked_at = datetime.fromisoformat(last_checked)
    except (TypeError, ValueError):
        return True
    if checked_at.tzinfo is None:
        checked_at = checked_at.replace(tzinfo=UTC)
    return now - checked_at > AGTV_REFRESH_AFTER


class SyncProviderDetailsJob(BaseJob):
    """Authenticate each provider and store expiry and connection usage.

    Providers whose account reports inactive are disabled. Xtream accounts
    are refreshed on every run, AGTV accounts at most once a day.
    """

    name = "syncProviderDetails"
    provider_scoped = True

    def __init__(self, app, *, on_providers_changed=None, **kwargs):
        super().__init__(app, **kwargs)
        self._on_providers_changed = on_providers_changed

    def execute(self, ctx):
        repo = ProviderRepository()
        providers = self.enabled_providers(ctx.provider_id)
        now = datetime.now(UTC)

        results = []
        disabled = []
        for provider in providers:
            ctx.check_cancelled()
            if provider.type == "agtv" and not _is_stale(provider.details, now):
                results.append({"provider_id": provider.id, "status": "skipped"})
                continue

            try:
                account = self.client_for(provider).authenticate(ctx.token, provider)
            except JobCancelledError:
                raise
            except PlayarrError as e:
                logger.warning("[%s] Account check failed: %s", provider.id, e)
                repo.update_details(provider.id, {
                    "expiration_date": None,
                    "max_connections": 0,
                    "active_connections": 0,
                    "active": None,
                    "last_checked": now.isoformat(),
                    "last_error": str(e),
                })
                results.append({"provider_id": provider.id, "status": "error", "error": str(e)})
                continue

            details = account.to_dict()
            details.update(last_checked=now.isoformat(), last_error=None)
            repo.update_details(provider.id, details)
            if account.active is False:
                repo.set_enabled(provider.id, False)
                disabled.append(provider.id)
                logger.warning("[%s] Account inactive, provider disabled", provider.id)
            results.append({
                "provider_id": provider.id,
                "status": "ok",
                "max_connections": account.max_connections,
                "active_connections": account.active_connections,
            })

        if self._on_providers_changed is not None:
            self._on_providers_changed()

        logger.info("Provider details refreshed: %d provider(s), %d disabled",
                    len(providers), len(disabled))
        return {
            "providers_checked": len(providers),
            "providers_disabled": disabled,
            "results": results,
        }
