"""Shared plumbing for the provider, title and source-health repositories."""

import json
from contextlib import contextmanager
from datetime import UTC, datetime

from extensions import db


class BaseRepository:
    """Session access plus the JSON and timestamp column conventions.

    JSON columns are TEXT; timestamps are ISO-8601 UTC strings so rows
    sort and compare the same way in SQLite and PostgreSQL.
    """

    def __init__(self):
        self._deferred = False

    @property
    def session(self):
        return db.session

    def _commit(self):
        if not self._deferred:
            self.session.commit()

    @contextmanager
    def batch(self):
        """Defer commits until the block exits; roll back if it raises.

        The details sync attaches hundreds of episode sources per show and
        commits them as one transaction.
        """
        self._deferred = True
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._deferred = False

    @staticmethod
    def _loads(raw, default):
        """Decode a JSON column; empty or corrupt text yields default."""
        if not raw:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _dumps(value) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def _now() -> str:
        return datetime.now(UTC).isoformat()
