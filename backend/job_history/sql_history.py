"""Job history persisted through Flask-SQLAlchemy.

The engine calls this from timer and worker threads, so every call pushes
its own application context. SQLAlchemy failures surface as StorageError
subclasses so the engine can tell storage trouble from job failures.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from error_handler import StoragePersistError, StorageUnavailableError
from job_history import JobHistoryBackend, JobRecord, JobState, _check_fields

logger = logging.getLogger(__name__)


def _to_record(row: dict) -> JobRecord:
    try:
        status = JobState(row["status"])
    except ValueError:
        logger.warning("Unknown job status %r for %s, reporting idle", row["status"], row["name"])
        status = JobState.IDLE
    return JobRecord(
        name=row["name"],
        status=status,
        last_execution=row["last_execution"],
        last_result=row["last_result"],
        execution_count=row["execution_count"],
        last_error=row["last_error"],
        triggered_by=row["triggered_by"],
        updated_at=row["updated_at"],
    )


class SqlJobHistory(JobHistoryBackend):
    """JobHistoryBackend backed by the job_history table."""

    def __init__(self, app):
        self._app = app

    def _repo(self):
        from db.repositories.jobs import JobHistoryRepository
        return JobHistoryRepository()

    def get_last(self, name: str) -> JobRecord | None:
        with self._app.app_context():
            try:
                row = self._repo().get(name)
            except SQLAlchemyError as e:
                raise StorageUnavailableError(f"Cannot read job history for {name}: {e}") from e
            return _to_record(row) if row else None

    def list_all(self) -> list[JobRecord]:
        with self._app.app_context():
            try:
                rows = self._repo().list_all()
            except SQLAlchemyError as e:
                raise StorageUnavailableError(f"Cannot list job history: {e}") from e
            return [_to_record(r) for r in rows]

    def upsert(self, name: str, status: JobState, *, increment_count: bool = False,
               **fields) -> JobRecord:
        _check_fields(fields)
        with self._app.app_context():
            repo = self._repo()
            try:
                row = repo.upsert(name, status.value, increment_count=increment_count, **fields)
            except SQLAlchemyError as e:
                repo.session.rollback()
                raise StoragePersistError(
                    f"Cannot persist job history for {name}: {e}",
                    context={"job": name, "status": status.value},
                ) from e
            return _to_record(row)

    def reset_running_to_cancelled(self) -> int:
        with self._app.app_context():
            repo = self._repo()
            try:
                return repo.reset_running_to_cancelled()
            except SQLAlchemyError as e:
                repo.session.rollback()
                raise StorageUnavailableError(f"Cannot reset running jobs: {e}") from e
