"""cleanupUnwantedProviderTitles: drop catalog data of disabled or deleted providers."""

import logging

from db.repositories.providers import ProviderRepository, ProviderTitleRepository
from db.repositories.titles import TitleRepository
from jobs.base import BaseJob

logger = logging.getLogger(__name__)


class CleanupProviderTitlesJob(BaseJob):
    name = "cleanupUnwantedProviderTitles"

    def __init__(self, app, *, on_sources_removed=None, **kwargs):
        super().__init__(app, **kwargs)
        self._on_sources_removed = on_sources_removed

    def execute(self, ctx):
        unwanted = ProviderRepository().list_unwanted()
        catalog = ProviderTitleRepository()
        titles = TitleRepository()

        removed = {}
        for provider in unwanted:
            ctx.check_cancelled()
            provider_titles = catalog.delete_for_provider(provider["id"])
            titles_changed = titles.remove_provider_sources(provider["id"])
            removed[provider["id"]] = {
                "provider_titles": provider_titles,
                "titles_changed": titles_changed,
            }
            if provider_titles or titles_changed:
                logger.info("[%s] Removed %d catalog entries, updated %d titles",
                            provider["id"], provider_titles, titles_changed)

        if removed and self._on_sources_removed is not None:
            self._on_sources_removed(list(removed))

        return {"providers_cleaned": len(removed), "removed": removed}
