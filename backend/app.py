"""Application factory for the Playarr Flask server.

Uses the Flask Application Factory pattern: create_app() builds and
configures the application, initializes extensions, wires the job engine
and the source selector, registers blueprints and starts the scheduler.
"""

import atexit
import os
import logging

from flask import Flask

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class StructuredJSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging (ELK, Loki, etc.)."""

    def format(self, record: logging.LogRecord) -> str:
        import json as _json
        from flask import g as _g

        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = getattr(_g, "request_id", None) if _has_app_context() else None
        if request_id:
            entry["request_id"] = request_id

        # Source races attach their per-probe summary
        race = getattr(record, "race", None)
        if race is not None:
            entry["race"] = race

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return _json.dumps(entry, default=str)


def _has_app_context() -> bool:
    """Check if a Flask application context is active."""
    from flask import has_app_context
    return has_app_context()


def _setup_logging(settings) -> None:
    """Configure the root logger and add the rotating file handler."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(log_level)

    use_json = getattr(settings, "log_format", "text").lower() == "json"
    if use_json:
        formatter: logging.Formatter = StructuredJSONFormatter()
        for handler in root.handlers:
            handler.setFormatter(formatter)
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    log_file = settings.log_file
    if not log_file:
        return
    # create_app may run more than once per process (tests)
    if any(getattr(h, "baseFilename", None) == os.path.abspath(log_file) for h in root.handlers):
        return
    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        from logging.handlers import RotatingFileHandler
        fh = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)
    except OSError as e:
        logging.getLogger(__name__).warning("Could not set up log file %s: %s", log_file, e)


def create_app(testing=False, client_factory=None):
    """Create and configure the Flask application.

    Args:
        testing: If True, initialize the job engine but do not start its
                 timers (for tests and verification).
        client_factory: Optional provider type -> ProviderClient override
                        used by the job bodies.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    from config import get_settings
    settings = get_settings()

    _setup_logging(settings)
    logger = logging.getLogger(__name__)

    # Register structured error handlers (PlayarrError -> JSON, generic 500)
    from error_handler import register_error_handlers
    register_error_handlers(app)

    # ---- Flask-SQLAlchemy initialization ----
    app.config["SQLALCHEMY_DATABASE_URI"] = settings.get_database_url()
    if settings.database_url and not settings.database_url.startswith("sqlite"):
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {"pool_pre_ping": True}
    else:
        # SQLite: job threads and request threads share the engine
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "connect_args": {"check_same_thread": False},
        }

    from extensions import db as sa_db
    sa_db.init_app(app)

    with app.app_context():
        # Import all models so they register with metadata
        import db.models  # noqa: F401
        sa_db.create_all()
        if not settings.database_url or settings.database_url.startswith("sqlite"):
            from sqlalchemy import text
            with sa_db.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA busy_timeout=5000"))
                conn.commit()

    _init_selection(app, settings)
    _init_jobs(app, settings, client_factory)

    from routes import register_blueprints
    register_blueprints(app)

    if not testing:
        _start_background(app, settings)
    else:
        logger.debug("Testing mode: job scheduler not started")

    return app


def _init_selection(app, settings):
    """Build the provider directory and the source selector."""
    from db.repositories.providers import ProviderRepository
    from db.repositories.titles import TitleRepository
    from providers.directory import ProviderDirectory
    from selection import DecisionCache, HealthTracker, SourceSelector, URLProber

    def load_providers():
        with app.app_context():
            return ProviderRepository().list_all(include_deleted=True)

    def find_sources(title_id, media_type, season, episode):
        with app.app_context():
            return TitleRepository().find_media(title_id, media_type, season, episode)

    directory = ProviderDirectory(load_providers)
    selector = SourceSelector(
        find_sources,
        directory,
        prober=URLProber(
            timeout=settings.probe_timeout_ms / 1000.0,
            max_bytes=settings.probe_max_bytes,
            max_redirects=settings.probe_max_redirects,
        ),
        health=HealthTracker(window=settings.error_window_seconds,
                             retention=settings.health_retention_seconds),
        cache=DecisionCache(ttl=settings.decision_cache_ttl_seconds,
                            max_entries=settings.decision_cache_max_entries),
        race_width=settings.race_width,
    )
    app.provider_directory = directory
    app.source_selector = selector


def _init_jobs(app, settings, client_factory=None):
    """Load job descriptors, build the engine and recover stale records."""
    from job_history import create_job_history
    from jobs import build_job_bodies
    from jobs.engine import JobEngine
    from jobs.registry import JobRegistry

    kwargs = {"client_factory": client_factory} if client_factory is not None else {}
    bodies = build_job_bodies(app, app.source_selector, **kwargs)
    registry = JobRegistry.from_file(settings.get_jobs_file())

    engine = JobEngine(bodies, stop_grace=settings.job_stop_grace_seconds)
    engine.initialize(registry, create_job_history(app))
    app.job_engine = engine


def _start_background(app, settings):
    """Start the job scheduler and stop it at interpreter exit."""
    engine = app.job_engine
    engine.start()
    atexit.register(engine.stop, settings.job_stop_grace_seconds)


if __name__ == "__main__":
    from config import get_settings
    app = create_app()
    app.run(host="0.0.0.0", port=get_settings().port, threaded=True)
