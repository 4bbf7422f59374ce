"""Tests for the job history backends (in-memory and SQL)."""

import pytest

from job_history import JobState, create_job_history
from job_history.memory_history import MemoryJobHistory
from job_history.sql_history import SqlJobHistory


@pytest.fixture(params=["memory", "sql"])
def history(request):
    if request.param == "memory":
        return MemoryJobHistory()
    app = request.getfixturevalue("app")
    return create_job_history(app)


def test_factory_selects_backend(app):
    assert isinstance(create_job_history(), MemoryJobHistory)
    assert isinstance(create_job_history(app), SqlJobHistory)


def test_get_last_unknown(history):
    assert history.get_last("never") is None


def test_upsert_creates_and_patches(history):
    history.upsert("sync", JobState.RUNNING, triggered_by="startup")
    record = history.get_last("sync")
    assert record.status == JobState.RUNNING
    assert record.triggered_by == "startup"
    assert record.execution_count == 0

    history.upsert("sync", JobState.COMPLETED, increment_count=True,
                   last_execution="2024-01-01T00:00:00+00:00",
                   last_result={"providers_processed": 2}, last_error=None)
    record = history.get_last("sync")
    assert record.status == JobState.COMPLETED
    assert record.execution_count == 1
    assert record.last_result == {"providers_processed": 2}
    assert record.last_error is None
    # Fields not passed are left alone
    assert record.triggered_by == "startup"
    assert record.updated_at is not None


def test_execution_count_only_moves_with_increment(history):
    for _ in range(3):
        history.upsert("a", JobState.COMPLETED, increment_count=True)
    history.upsert("a", JobState.FAILED, last_error="boom")
    record = history.get_last("a")
    assert record.execution_count == 3
    assert record.status == JobState.FAILED
    assert record.last_error == "boom"


def test_rejects_unknown_fields(history):
    with pytest.raises(ValueError):
        history.upsert("a", JobState.RUNNING, execution_count=10)


def test_list_all(history):
    history.upsert("b", JobState.COMPLETED)
    history.upsert("a", JobState.FAILED)
    assert sorted(r.name for r in history.list_all()) == ["a", "b"]


def test_reset_running_to_cancelled(history):
    history.upsert("a", JobState.RUNNING)
    history.upsert("b", JobState.RUNNING)
    history.upsert("c", JobState.COMPLETED)

    assert history.reset_running_to_cancelled() == 2
    assert history.get_last("a").status == JobState.CANCELLED
    assert history.get_last("c").status == JobState.COMPLETED
    assert history.reset_running_to_cancelled() == 0


def test_memory_returns_copies():
    history = MemoryJobHistory()
    history.upsert("a", JobState.COMPLETED, last_result={"items": [1]})
    record = history.get_last("a")
    record.last_result["items"].append(2)
    assert history.get_last("a").last_result == {"items": [1]}
