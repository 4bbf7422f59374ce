"""Core ORM models: job history.

Timestamp columns use Text (ISO 8601, UTC) like the rest of the schema.
"""

from typing import Optional

from sqlalchemy import Index, Integer, Text, String
from sqlalchemy.orm import Mapped, mapped_column

from extensions import db


class JobHistory(db.Model):
    """Latest status and counters for one background job."""

    __tablename__ = "job_history"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="idle")
    last_execution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_result_json: Mapped[Optional[str]] = mapped_column(Text, default="")
    execution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, default="")
    triggered_by: Mapped[Optional[str]] = mapped_column(String(100), default="")
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_job_history_status", "status"),
    )
