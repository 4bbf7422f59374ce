"""In-memory job history.

Records do NOT persist across restarts, so reset_running_to_cancelled only
matters within a single process (tests exercise it directly).
"""

import copy
import logging
import threading
from datetime import UTC, datetime

from job_history import JobHistoryBackend, JobRecord, JobState, _check_fields

logger = logging.getLogger(__name__)


class MemoryJobHistory(JobHistoryBackend):
    """JobHistoryBackend implementation backed by a dict."""

    def __init__(self):
        self._records: dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def get_last(self, name: str) -> JobRecord | None:
        with self._lock:
            record = self._records.get(name)
            return copy.deepcopy(record) if record else None

    def list_all(self) -> list[JobRecord]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def upsert(self, name: str, status: JobState, *, increment_count: bool = False,
               **fields) -> JobRecord:
        _check_fields(fields)
        with self._lock:
            record = self._records.get(name)
            if record is None:
                record = JobRecord(name=name)
                self._records[name] = record
            record.status = status
            for key, value in fields.items():
                setattr(record, key, value)
            if increment_count:
                record.execution_count += 1
            record.updated_at = datetime.now(UTC).isoformat()
            return copy.deepcopy(record)

    def reset_running_to_cancelled(self) -> int:
        count = 0
        with self._lock:
            for record in self._records.values():
                if record.status is JobState.RUNNING:
                    record.status = JobState.CANCELLED
                    record.updated_at = datetime.now(UTC).isoformat()
                    count += 1
        return count
