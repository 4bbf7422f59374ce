"""Centralized error handling with structured JSON error responses.

Custom exception hierarchy with error codes, HTTP status mapping,
and troubleshooting hints. All PlayarrError subtypes are automatically
caught by Flask error handlers and returned as structured JSON.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional

from flask import jsonify, g

logger = logging.getLogger(__name__)


# ─── Exception Hierarchy ─────────────────────────────────────────────────────


class PlayarrError(Exception):
    """Base exception for all Playarr application errors.

    Attributes:
        code: Machine-readable error code (e.g. "JOB_001")
        http_status: HTTP status code to return
        context: Additional context data for debugging
        troubleshooting: Human-readable hint for resolving the issue
    """

    code: str = "PLAYARR_000"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        context: Optional[dict] = None,
        troubleshooting: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.context = context or {}
        self.troubleshooting = troubleshooting


class JobError(PlayarrError):
    """Job engine errors."""

    code = "JOB_000"
    http_status = 500


class JobNotFoundError(JobError):
    """No job is registered under the requested name."""

    code = "JOB_001"
    http_status = 404

    def __init__(self, name: str = "", **kwargs: object) -> None:
        super().__init__(
            f"Job '{name}' not found",
            context={"job": name},
            **kwargs,  # type: ignore[arg-type]
        )


class JobAlreadyRunningError(JobError):
    """The job already has a live execution."""

    code = "JOB_002"
    http_status = 409

    def __init__(self, name: str = "", **kwargs: object) -> None:
        super().__init__(
            f"Job '{name}' is already running",
            context={"job": name},
            troubleshooting="Wait for the running execution to finish or abort it first.",
            **kwargs,  # type: ignore[arg-type]
        )


class JobBlockedError(JobError):
    """A conflicting job is running."""

    code = "JOB_003"
    http_status = 409

    def __init__(self, name: str = "", blocked_by: Optional[list] = None, **kwargs: object) -> None:
        blocked_by = list(blocked_by or [])
        super().__init__(
            f"Job '{name}' is blocked by running job(s): {', '.join(blocked_by)}",
            context={"job": name, "blocked_by": blocked_by},
            **kwargs,  # type: ignore[arg-type]
        )


class JobNotRunningError(JobError):
    """Abort requested for a job without a live execution."""

    code = "JOB_004"
    http_status = 409

    def __init__(self, name: str = "", **kwargs: object) -> None:
        super().__init__(
            f"Job '{name}' is not running",
            context={"job": name},
            **kwargs,  # type: ignore[arg-type]
        )


class JobExecutionError(JobError):
    """A job body raised."""

    code = "JOB_005"
    http_status = 500


class JobCancelledError(JobError):
    """A job execution was cancelled before it finished."""

    code = "JOB_006"
    http_status = 409


class EngineAlreadyStartedError(JobError):
    """start() called on an engine that is already scheduling."""

    code = "JOB_007"
    http_status = 500


class EngineNotInitializedError(JobError):
    """Engine used before initialize() succeeded."""

    code = "JOB_008"
    http_status = 503



class JobScopeError(JobError):
    """A provider scope was requested for a job that runs across all providers."""

    code = "JOB_009"
    http_status = 400

    def __init__(self, name: str = "", **kwargs: object) -> None:
        super().__init__(
            f"Job '{name}' cannot be limited to one provider",
            context={"job": name},
            **kwargs,  # type: ignore[arg-type]
        )


class StorageError(PlayarrError):
    """Persistence layer errors."""

    code = "DB_001"
    http_status = 500


class StorageUnavailableError(StorageError):
    """Job history storage cannot be queried."""

    code = "DB_002"
    http_status = 503

    def __init__(self, message: str = "Job history storage unavailable", **kwargs: object) -> None:
        super().__init__(
            message,
            troubleshooting="Check that the database path is writable and the database is reachable.",
            **kwargs,  # type: ignore[arg-type]
        )


class StoragePersistError(StorageError):
    """A write to job history or provider configuration failed."""

    code = "DB_003"
    http_status = 500


class ProviderUnavailableError(PlayarrError):
    """Upstream provider API failed or rejected the credentials."""

    code = "PROV_001"
    http_status = 502



class ProviderNotFoundError(PlayarrError):
    """No provider is stored under the requested id."""

    code = "PROV_005"
    http_status = 404

    def __init__(self, provider_id: str = "", **kwargs: object) -> None:
        super().__init__(
            f"Provider '{provider_id}' not found",
            context={"provider": provider_id},
            **kwargs,  # type: ignore[arg-type]
        )


class ConfigurationError(PlayarrError):
    """Configuration validation errors."""

    code = "CFG_001"
    http_status = 400


# ─── Structured Error Response Builder ───────────────────────────────────────


def _build_error_response(error: PlayarrError) -> dict:
    """Build a structured JSON error response from a PlayarrError."""
    response: dict = {
        "error": str(error),
        "code": error.code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    request_id = getattr(g, "request_id", None)
    if request_id:
        response["request_id"] = request_id

    if error.context:
        response["context"] = error.context

    if error.troubleshooting:
        response["troubleshooting"] = error.troubleshooting

    return response


# ─── Flask Error Handler Registration ────────────────────────────────────────


def register_error_handlers(app: object) -> None:
    """Register global error handlers on a Flask app.

    Call this once during app setup to install:
    - PlayarrError handler (structured JSON)
    - Generic Exception handler (500 with logging)
    - before_request hook for request IDs
    """
    from flask import Flask
    flask_app: Flask = app  # type: ignore[assignment]

    @flask_app.before_request
    def _set_request_id() -> None:
        """Assign a unique request ID to every incoming request."""
        g.request_id = str(uuid.uuid4())[:8]

    @flask_app.errorhandler(PlayarrError)
    def _handle_playarr_error(error: PlayarrError):  # type: ignore[return]
        """Return structured JSON for known application errors."""
        logger.warning(
            "[%s] %s: %s (request_id=%s)",
            error.code,
            error.__class__.__name__,
            error,
            getattr(g, "request_id", "?"),
        )
        return jsonify(_build_error_response(error)), error.http_status

    @flask_app.errorhandler(Exception)
    def _handle_generic_error(error: Exception):  # type: ignore[return]
        """Catch-all: log full traceback, return generic 500."""
        # HTTPException (404, 405, ...) is rendered by Flask itself
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException):
            return error

        request_id = getattr(g, "request_id", "?")
        logger.exception(
            "Unhandled exception (request_id=%s): %s", request_id, error
        )
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 500
