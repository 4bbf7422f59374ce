"""syncTitleDetails: resolve episode streams for providers that need a per-title call."""

import logging

from db.repositories.providers import ProviderTitleRepository
from db.repositories.titles import TitleRepository
from error_handler import JobCancelledError, PlayarrError
from jobs.base import BaseJob

logger = logging.getLogger(__name__)


class SyncTitleDetailsJob(BaseJob):
    """For every matched tvshow of a details-per-title provider (Xtream),
    fetch the episode list and attach each episode as a source."""

    name = "syncTitleDetails"
    provider_scoped = True

    def execute(self, ctx):
        catalog = ProviderTitleRepository()
        titles = TitleRepository()
        summary = []

        for provider in self.enabled_providers(ctx.provider_id):
            ctx.check_cancelled()
            client = self.client_for(provider)
            if not client.details_per_title:
                continue

            shows = [row for row in catalog.list_for_provider(provider.id, "tvshows")
                     if row.get("title_id")]
            fetched = failed = added = 0
            for i, show in enumerate(shows):
                ctx.checkpoint(i)
                try:
                    details = client.fetch_details(ctx.token, provider, "tvshows",
                                                   show["external_id"])
                except JobCancelledError:
                    raise
                except PlayarrError as e:
                    failed += 1
                    logger.debug("[%s] Details for %s failed: %s",
                                 provider.id, show["external_id"], e)
                    continue
                fetched += 1
                with titles.batch():
                    for episode in details.episodes:
                        if titles.attach_source(show["title_id"], "tvshows", provider.id,
                                                episode.stream_path, name=show["name"],
                                                season=episode.season, episode=episode.episode):
                            added += 1

            if failed:
                logger.warning("[%s] %d of %d show detail requests failed",
                               provider.id, failed, len(shows))
            logger.info("[%s] Title details: %d shows, %d new episode sources",
                        provider.id, fetched, added)
            summary.append({"provider_id": provider.id, "shows": fetched,
                            "failed": failed, "sources_added": added})

        return {"providers_processed": len(summary), "results": summary}
