"""Typed results of JobEngine.run_job / abort_job.

Run outcomes are values, not exceptions: timer ticks and chain steps only
log them, admin routes turn them into PlayarrError responses via to_error().
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from error_handler import (
    JobAlreadyRunningError,
    JobBlockedError,
    JobCancelledError,
    JobExecutionError,
    JobNotFoundError,
    PlayarrError,
)


@dataclass(frozen=True)
class Ran:
    name: str
    result: Any = None
    duration: float = 0.0
    status = "completed"


@dataclass(frozen=True)
class Failed:
    name: str
    error: BaseException
    duration: float = 0.0
    status = "failed"


@dataclass(frozen=True)
class Cancelled:
    name: str
    reason: str = "cancelled"
    status = "cancelled"


@dataclass(frozen=True)
class AlreadyRunning:
    name: str
    status = "already_running"


@dataclass(frozen=True)
class BlockedBy:
    name: str
    blockers: tuple[str, ...] = ()
    status = "blocked"


@dataclass(frozen=True)
class NotFound:
    name: str
    status = "not_found"


RunOutcome = Union[Ran, Failed, Cancelled, AlreadyRunning, BlockedBy, NotFound]


class AbortOutcome(Enum):
    OK = "ok"
    NOT_RUNNING = "not_running"
    NOT_FOUND = "not_found"


def outcome_to_dict(outcome: RunOutcome) -> dict:
    data = {"job": outcome.name, "status": outcome.status}
    if isinstance(outcome, Ran):
        data["result"] = outcome.result
        data["duration_seconds"] = round(outcome.duration, 3)
    elif isinstance(outcome, Failed):
        data["error"] = str(outcome.error)
        data["duration_seconds"] = round(outcome.duration, 3)
    elif isinstance(outcome, Cancelled):
        data["reason"] = outcome.reason
    elif isinstance(outcome, BlockedBy):
        data["blocked_by"] = list(outcome.blockers)
    return data


def to_error(outcome: RunOutcome) -> PlayarrError | None:
    """Map a non-successful outcome to the error an admin caller should see."""
    if isinstance(outcome, Ran):
        return None
    if isinstance(outcome, NotFound):
        return JobNotFoundError(outcome.name)
    if isinstance(outcome, AlreadyRunning):
        return JobAlreadyRunningError(outcome.name)
    if isinstance(outcome, BlockedBy):
        return JobBlockedError(outcome.name, blocked_by=outcome.blockers)
    if isinstance(outcome, Cancelled):
        return JobCancelledError(
            f"Job '{outcome.name}' was cancelled ({outcome.reason})",
            context={"job": outcome.name, "reason": outcome.reason},
        )
    return JobExecutionError(
        f"Job '{outcome.name}' failed: {outcome.error}",
        context={"job": outcome.name},
    )
