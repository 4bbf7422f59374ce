"""Prometheus metrics for Playarr monitoring.

Exposes job engine and source selection metrics.
Scraped via ``GET /metrics``.

Requires: ``prometheus_client``
"""

import logging
import threading

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

logger = logging.getLogger(__name__)

# -- Metric Definitions -------------------------------------------------------

# Jobs
JOB_EXECUTIONS = Counter(
    "playarr_job_executions_total",
    "Terminated job executions",
    ["name", "status"],  # success | failure | cancelled
)
JOB_DURATION = Histogram(
    "playarr_job_duration_seconds",
    "Job execution duration in seconds",
    ["name"],
    buckets=(0.1, 0.5, 1, 5, 15, 60, 300, 900, 3600, 7200),
)
JOBS_RUNNING = Gauge("playarr_jobs_running", "Jobs currently executing")

# Source selection
PROBE_OUTCOMES = Counter(
    "playarr_probe_outcomes_total",
    "Stream URL probe results",
    ["provider", "status"],  # HTTP status code, or error kind
)
SELECTIONS_TOTAL = Counter(
    "playarr_source_selections_total",
    "get_best_source calls by result",
    ["result"],  # cache_hit | race | fallback | none
)
PROVIDER_RECENT_ERRORS = Gauge(
    "playarr_provider_recent_errors",
    "Material errors in the current error window",
    ["provider"],
)

APP_INFO = Info("playarr", "Playarr application information")

# Providers that currently have a PROVIDER_RECENT_ERRORS series
_error_gauge_providers: set[str] = set()
_gauge_lock = threading.Lock()

# -- Collectors ----------------------------------------------------------------


def collect_engine_metrics(engine) -> None:
    if engine is None:
        return
    JOBS_RUNNING.set(len(engine.running_jobs()))


def collect_health_metrics(selector) -> None:
    """Export recent error counts; providers dropped by a health sweep lose their series."""
    if selector is None:
        return
    counts = selector.health.error_counts()
    with _gauge_lock:
        for provider_id in _error_gauge_providers - counts.keys():
            PROVIDER_RECENT_ERRORS.remove(provider_id)
        for provider_id, count in counts.items():
            PROVIDER_RECENT_ERRORS.labels(provider=provider_id).set(count)
        _error_gauge_providers.clear()
        _error_gauge_providers.update(counts)


# -- Recording helpers ---------------------------------------------------------


def record_job_execution(name: str, status: str, duration: float) -> None:
    """Record a terminated job execution."""
    JOB_EXECUTIONS.labels(name=name, status=status).inc()
    if status != "cancelled":
        JOB_DURATION.labels(name=name).observe(duration)


def record_probe_outcome(provider: str, status) -> None:
    """Record one probe result (status code or error kind)."""
    PROBE_OUTCOMES.labels(provider=provider, status=str(status)).inc()


def record_selection(result: str) -> None:
    SELECTIONS_TOTAL.labels(result=result).inc()


# -- Endpoint helper -----------------------------------------------------------


def generate_metrics(engine=None, selector=None) -> tuple[bytes, str]:
    """Collect gauges and return Prometheus text output.

    Returns:
        (body_bytes, content_type)
    """
    try:
        collect_engine_metrics(engine)
        collect_health_metrics(selector)
    except Exception as e:
        logger.warning("Metric collection failed: %s", e)

    from version import __version__
    APP_INFO.info({"version": __version__})

    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
