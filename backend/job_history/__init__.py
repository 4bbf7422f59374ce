"""Job history store abstraction with SQL and in-memory backends.

One record per job name holds the latest status, result and execution
counters. The job engine is the only writer; admin routes and the CLI read
through it.

Provides a JobHistoryBackend ABC with two implementations:
- SqlJobHistory: Flask-SQLAlchemy backed, survives restarts
- MemoryJobHistory: process-local dict, used in tests and dry runs
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Persisted job status."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobRecord:
    """Latest known state of one job."""

    name: str
    status: JobState = JobState.IDLE
    last_execution: str | None = None
    last_result: Any | None = None
    execution_count: int = 0
    last_error: str | None = None
    triggered_by: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


# Fields a caller may patch through upsert(); execution_count only moves via
# increment_count so that concurrent readers never see it go backwards.
PATCHABLE_FIELDS = ("last_execution", "last_result", "last_error", "triggered_by")


class JobHistoryBackend(ABC):
    """Abstract base class for job history backends."""

    @abstractmethod
    def get_last(self, name: str) -> JobRecord | None:
        """Get the record for a job, or None if it never ran."""

    @abstractmethod
    def list_all(self) -> list[JobRecord]:
        """Get every stored record."""

    @abstractmethod
    def upsert(self, name: str, status: JobState, *, increment_count: bool = False,
               **fields) -> JobRecord:
        """Create or update a job record.

        Args:
            name: Job name (record key).
            status: New status.
            increment_count: Add one to execution_count.
            **fields: Any of PATCHABLE_FIELDS. Omitted fields keep their value.

        Raises:
            StoragePersistError: The write failed.
        """

    @abstractmethod
    def reset_running_to_cancelled(self) -> int:
        """Rewrite every RUNNING record to CANCELLED.

        Returns:
            Number of records changed.

        Raises:
            StorageUnavailableError: The store cannot be queried.
        """


def _check_fields(fields: dict) -> None:
    unknown = set(fields) - set(PATCHABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown job history fields: {sorted(unknown)}")


def create_job_history(app=None) -> JobHistoryBackend:
    """Factory function for the job history backend.

    Args:
        app: Flask application whose database stores the history. None
             selects the in-memory backend.
    """
    if app is None:
        from job_history.memory_history import MemoryJobHistory

        logger.info("Using in-memory job history")
        return MemoryJobHistory()

    from job_history.sql_history import SqlJobHistory

    return SqlJobHistory(app)
