"""Tests for persistence/workflow_states.py using a SQLite database."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from builds_collector.db import db_models, get_session
from builds_collector.errors import InvalidTransitionError
from builds_collector.persistence import WorkflowStateStore, compute_progress
from builds_collector.utils.datetime_utils import now_utc


@pytest.fixture
def store(db_engine):
    return WorkflowStateStore()


class TestComputeProgress:
    def test_zero_total(self):
        assert compute_progress(5, 0) == 0.0

    def test_capped(self):
        assert compute_progress(150, 100) == 100.0

    def test_rounded(self):
        assert compute_progress(1, 3) == 33.33


class TestLifecycle:
    def test_start_and_checkpoint(self, store):
        store.start("rankings-a", "rankings", batch_id="batch-1", total_items=200)
        state = store.checkpoint("rankings-a", items_processed=50, api_requests=50, last_processed_id="49")

        assert state.status == "running"
        assert state.progress_percentage == 25.0
        assert state.last_processed_id == "49"

    def test_start_is_idempotent_for_redelivery(self, store):
        store.start("rankings-a", "rankings", batch_id="batch-1", total_items=10)
        store.checkpoint("rankings-a", items_processed=4, api_requests=4)
        again = store.start("rankings-a", "rankings", batch_id="batch-1", total_items=10)
        assert again.items_processed == 4

    def test_rate_limited_then_continuing(self, store):
        store.start("reports-a", "reports", batch_id="batch-1", total_items=250)
        store.checkpoint("reports-a", items_processed=200, api_requests=400)
        store.mark_rate_limited("reports-a", "rate limit")
        state = store.mark_continuing("reports-a", continuation_count=1)

        assert state.status == "continuing"
        assert state.continuation_count == 1
        assert state.items_processed == 200
        assert state.completed_at is not None

    def test_complete_sets_full_progress(self, store):
        store.start("builds-a", "builds", batch_id="batch-1", total_items=3)
        state = store.complete("builds-a", items_processed=3, api_requests=0, result_summary={"ok": True})
        assert state.progress_percentage == 100.0
        assert state.result_summary == {"ok": True}

    def test_terminal_states_do_not_move(self, store):
        store.start("builds-a", "builds", batch_id="batch-1")
        store.complete("builds-a", items_processed=0, api_requests=0)
        with pytest.raises(InvalidTransitionError):
            store.checkpoint("builds-a", items_processed=1, api_requests=0)
        with pytest.raises(InvalidTransitionError):
            store.fail("builds-a", "late failure")

    def test_rate_limited_cannot_complete(self, store):
        store.start("reports-a", "reports", batch_id="batch-1")
        store.mark_rate_limited("reports-a", "rate limit")
        with pytest.raises(InvalidTransitionError):
            store.complete("reports-a", items_processed=0, api_requests=0)

    def test_missing_state(self, store):
        with pytest.raises(InvalidTransitionError, match="does not exist"):
            store.fail("nope", "error")


class TestQueries:
    def test_lineage_in_continuation_order(self, store):
        store.start("reports-b", "reports", batch_id="batch-1", parent_workflow_id="reports-a", continuation_count=1)
        store.start("reports-a", "reports", batch_id="batch-1")
        store.start("rankings-a", "rankings", batch_id="batch-1")

        lineage = store.get_lineage("batch-1", "reports")
        assert [s.id for s in lineage] == ["reports-a", "reports-b"]
        assert lineage[1].parent_workflow_id == "reports-a"

    def test_last_run_and_statistics(self, store):
        store.start("rankings-a", "rankings", batch_id="batch-1")
        store.complete("rankings-a", items_processed=10, api_requests=10)
        store.start("rankings-b", "rankings", batch_id="batch-2")
        store.fail("rankings-b", "boom")

        assert store.get_last_run("rankings").id == "rankings-b"
        stats = store.get_statistics("rankings", days=7)
        assert stats["total_runs"] == 2
        assert stats["by_status"] == {"completed": 1, "failed": 1}
        assert stats["items_processed"] == 10

    def test_list_by_type(self, store):
        store.start("rankings-a", "rankings", batch_id="batch-1")
        store.start("builds-a", "builds", batch_id="batch-1")
        assert [s.id for s in store.list_by_type("rankings")] == ["rankings-a"]
        assert store.list_by_type("rankings", since=now_utc() + timedelta(days=1)) == []

    def test_delete_older_than_keeps_running(self, store):
        store.start("old-done", "rankings", batch_id="batch-1")
        store.complete("old-done", items_processed=0, api_requests=0)
        store.start("old-running", "rankings", batch_id="batch-1")
        with get_session() as session:
            session.execute(
                update(db_models.WorkflowState).values(created_at=now_utc() - timedelta(days=40))
            )

        assert store.delete_older_than(30) == 1
        assert store.get("old-done") is None
        assert store.get("old-running") is not None

    def test_mark_stale_running(self, store):
        store.start("stale", "builds", batch_id="batch-1")
        store.start("fresh", "builds", batch_id="batch-1")
        with get_session() as session:
            session.execute(
                update(db_models.WorkflowState)
                .where(db_models.WorkflowState.id == "stale")
                .values(updated_at=now_utc() - timedelta(hours=13))
            )

        marked = store.mark_stale_running(timedelta(hours=12), "interrupted")
        assert marked == ["stale"]
        assert store.get("stale").status == "failed"
        assert store.get("fresh").status == "running"
