"""Background jobs: registry, engine and the built-in job bodies.

Usage:
    from jobs import build_job_bodies
    from jobs.engine import JobEngine

    engine = JobEngine(build_job_bodies(app, selector))
    engine.initialize(JobRegistry.from_file(path), create_job_history(app))
    engine.start()
"""

from providers import get_provider_client


def build_job_bodies(app, selector, client_factory=get_provider_client) -> dict:
    """Create the name -> body map for every built-in job.

    Args:
        app: Flask application (bodies run inside its app context).
        selector: SourceSelector whose provider snapshot and caches the
                  jobs keep in step with the database.
        client_factory: provider type -> ProviderClient.
    """
    from jobs.cleanup_provider_titles import CleanupProviderTitlesJob
    from jobs.purge_source_health import PurgeSourceHealthJob
    from jobs.sync_provider_details import SyncProviderDetailsJob
    from jobs.sync_provider_titles import SyncProviderTitlesJob
    from jobs.sync_title_details import SyncTitleDetailsJob

    def _sources_removed(provider_ids):
        selector.invalidate_providers()
        for provider_id in provider_ids:
            selector.cache.invalidate_provider(provider_id)

    jobs = [
        SyncProviderDetailsJob(app, client_factory=client_factory,
                               on_providers_changed=selector.invalidate_providers),
        SyncProviderTitlesJob(app, client_factory=client_factory),
        SyncTitleDetailsJob(app, client_factory=client_factory),
        CleanupProviderTitlesJob(app, client_factory=client_factory,
                                 on_sources_removed=_sources_removed),
        PurgeSourceHealthJob(selector),
    ]
    return {job.name: job for job in jobs}
