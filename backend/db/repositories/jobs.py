"""Job history repository using SQLAlchemy ORM."""

import logging
from typing import Optional

from sqlalchemy import select, update

from db.models.core import JobHistory
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class JobHistoryRepository(BaseRepository):
    """Repository for job_history table operations."""

    def get(self, name: str) -> Optional[dict]:
        """Get the history row for a job."""
        row = self.session.get(JobHistory, name)
        if not row:
            return None
        return self._row_to_dict(row)

    def list_all(self) -> list:
        """Get every history row ordered by job name."""
        rows = self.session.execute(
            select(JobHistory).order_by(JobHistory.name)
        ).scalars().all()
        return [self._row_to_dict(r) for r in rows]

    def upsert(self, name: str, status: str, increment_count: bool = False,
               **fields) -> dict:
        """Insert or update the row for a job.

        Only the keys present in fields are written; last_result is stored
        as JSON.
        """
        row = self.session.get(JobHistory, name)
        if row is None:
            row = JobHistory(name=name, status=status, execution_count=0,
                             updated_at=self._now())
            self.session.add(row)

        row.status = status
        if "last_execution" in fields:
            row.last_execution = fields["last_execution"]
        if "last_result" in fields:
            result = fields["last_result"]
            row.last_result_json = self._dumps(result) if result is not None else ""
        if "last_error" in fields:
            row.last_error = fields["last_error"] or ""
        if "triggered_by" in fields:
            row.triggered_by = fields["triggered_by"] or ""
        if increment_count:
            row.execution_count = (row.execution_count or 0) + 1
        row.updated_at = self._now()
        self._commit()
        return self._row_to_dict(row)

    def reset_running_to_cancelled(self) -> int:
        """Flip all 'running' rows to 'cancelled'. Returns count changed."""
        stmt = (
            update(JobHistory)
            .where(JobHistory.status == "running")
            .values(status="cancelled", updated_at=self._now())
        )
        result = self.session.execute(stmt)
        self._commit()
        return result.rowcount or 0

    def _row_to_dict(self, row: JobHistory) -> dict:
        return {
            "name": row.name,
            "status": row.status,
            "last_execution": row.last_execution,
            "last_result": self._loads(row.last_result_json, None),
            "execution_count": row.execution_count or 0,
            "last_error": row.last_error or None,
            "triggered_by": row.triggered_by or None,
            "updated_at": row.updated_at,
        }
