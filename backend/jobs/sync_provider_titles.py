"""syncIPTVProviderTitles: pull every enabled provider's catalog."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from cancellation import CancellationToken
from db.repositories.providers import ProviderTitleRepository
from db.repositories.titles import TitleRepository
from error_handler import JobCancelledError, PlayarrError
from jobs.base import BaseJob
from providers.base import MEDIA_TYPES

logger = logging.getLogger(__name__)

MAX_FETCH_WORKERS = 4


class SyncProviderTitlesJob(BaseJob):
    """Fetch movies and tvshows catalogs and link them to titles.

    Catalogs are downloaded in parallel; database writes stay on the job
    thread. A failing media type is logged and does not stop the others.
    Entries with a title_id and a stream path become title sources.
    """

    name = "syncIPTVProviderTitles"
    provider_scoped = True

    def execute(self, ctx):
        providers = self.enabled_providers(ctx.provider_id)
        if not providers:
            logger.info("No enabled providers, nothing to sync")
            return {"providers_processed": 0, "results": []}

        results = {p.id: {"provider_id": p.id} for p in providers}
        catalogs = self._fetch_all(ctx.token, providers, results)
        ctx.check_cancelled()

        titles_repo = ProviderTitleRepository()
        for (provider, media_type), items in catalogs:
            ctx.check_cancelled()
            counts = titles_repo.upsert_many(provider.id, media_type,
                                             [item.to_dict() for item in items])
            linked = self._link_sources(ctx, provider, items)
            results[provider.id][media_type] = {
                "items": len(items),
                "inserted": counts["inserted"],
                "updated": counts["updated"],
                "sources_added": linked,
            }
            logger.info("[%s] %s: %d items (%d new), %d new sources",
                        provider.id, media_type, len(items), counts["inserted"], linked)

        return {"providers_processed": len(providers), "results": list(results.values())}

    def _fetch_all(self, token: CancellationToken, providers, results) -> list:
        catalogs = []
        with ThreadPoolExecutor(max_workers=MAX_FETCH_WORKERS,
                                thread_name_prefix="catalog") as executor:
            futures = {
                executor.submit(self.client_for(p).fetch_catalog, token, p, media_type): (p, media_type)
                for p in providers
                for media_type in MEDIA_TYPES
            }
            for future in as_completed(futures):
                provider, media_type = futures[future]
                try:
                    catalogs.append(((provider, media_type), future.result()))
                except JobCancelledError:
                    for other in futures:
                        other.cancel()
                    raise
                except PlayarrError as e:
                    logger.error("[%s] %s catalog fetch failed: %s", provider.id, media_type, e)
                    results[provider.id][media_type] = {"error": str(e)}
        # Keep a stable write order regardless of download completion order
        order = {p.id: i for i, p in enumerate(providers)}
        catalogs.sort(key=lambda c: (order[c[0][0].id], MEDIA_TYPES.index(c[0][1])))
        return catalogs

    def _link_sources(self, ctx, provider, items) -> int:
        repo = TitleRepository()
        added = 0
        with repo.batch():
            for i, item in enumerate(items):
                ctx.checkpoint(i)
                if not item.title_id or not item.stream_path:
                    continue
                if repo.attach_source(item.title_id, item.media_type, provider.id,
                                      item.stream_path, name=item.name,
                                      season=item.season, episode=item.episode):
                    added += 1
        return added
