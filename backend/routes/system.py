"""System routes: /api/v1/health, /api/v1/config, /metrics."""

import logging

from flask import Blueprint, Response, current_app, jsonify

from version import __version__

bp = Blueprint("system", __name__)
logger = logging.getLogger(__name__)


@bp.route("/api/v1/health", methods=["GET"])
def health():
    """Health check: database reachability and engine state."""
    from sqlalchemy import text

    from extensions import db

    services = {}
    healthy = True
    try:
        db.session.execute(text("SELECT 1"))
        services["database"] = "ok"
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", e)
        services["database"] = "error"
        healthy = False

    engine = current_app.job_engine
    services["jobs_running"] = len(engine.running_jobs())
    services["providers"] = len(current_app.provider_directory.usable())

    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "version": __version__,
        "services": services,
    }), 200 if healthy else 503


@bp.route("/api/v1/config", methods=["GET"])
def get_config():
    """Current settings with credentials masked."""
    from config import get_settings

    return jsonify(get_settings().get_safe_config())


@bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Prometheus metrics endpoint."""
    from metrics import generate_metrics

    body, content_type = generate_metrics(current_app.job_engine, current_app.source_selector)
    return Response(body, mimetype=content_type)
