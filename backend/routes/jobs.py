"""Job admin routes: /jobs, /jobs/<name>, /jobs/<name>/trigger, /jobs/<name>/abort."""

import logging

from flask import Blueprint, current_app, jsonify, request

from db.repositories.providers import ProviderRepository
from error_handler import (
    JobNotFoundError,
    JobNotRunningError,
    JobScopeError,
    ProviderNotFoundError,
)
from jobs.outcomes import AbortOutcome, outcome_to_dict, to_error

bp = Blueprint("jobs", __name__, url_prefix="/api/v1")
logger = logging.getLogger(__name__)


def _engine():
    return current_app.job_engine


@bp.route("/jobs", methods=["GET"])
def list_jobs():
    """List every registered job with its descriptor and last record."""
    jobs = _engine().list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@bp.route("/jobs/<name>", methods=["GET"])
def get_job(name):
    """Get the persisted status of one job."""
    engine = _engine()
    record = engine.get_job_status(name)
    if record is None:
        raise JobNotFoundError(name)
    data = record.to_dict()
    data["running"] = engine.is_running(name)
    return jsonify(data)


@bp.route("/jobs/<name>/trigger", methods=["POST"])
def trigger_job(name):
    """Run a job now and wait for it to finish.

    Optional ``provider_id`` (query string or JSON body) limits the sync
    jobs to one provider.

    Returns 200 with the result on success. Conflicts (already running,
    blocked by another job) are 409, unknown job or provider names 404,
    a provider scope on a job that has none 400, failures 500.
    """
    engine = _engine()
    provider_id = _provider_id()
    if provider_id is not None:
        if engine.get_job_status(name) is None:
            raise JobNotFoundError(name)
        if not engine.supports_provider_scope(name):
            raise JobScopeError(name)
        if ProviderRepository().get(provider_id) is None:
            raise ProviderNotFoundError(provider_id)

    outcome = engine.run_job(name, triggered_by="manual", provider_id=provider_id)
    error = to_error(outcome)
    if error is not None:
        raise error
    logger.info("Job %s triggered via API", name)
    data = outcome_to_dict(outcome)
    if provider_id is not None:
        data["provider_id"] = provider_id
    return jsonify(data)


def _provider_id() -> str | None:
    value = request.args.get("provider_id")
    if value is None:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            value = body.get("provider_id")
    return str(value) if value else None


@bp.route("/jobs/<name>/abort", methods=["POST"])
def abort_job(name):
    """Signal a running job to stop."""
    result = _engine().abort_job(name)
    if result is AbortOutcome.NOT_FOUND:
        raise JobNotFoundError(name)
    if result is AbortOutcome.NOT_RUNNING:
        raise JobNotRunningError(name)
    return jsonify({"job": name, "status": "aborting"}), 202
