"""Checkpoint store for workflow executions.

Every stage execution owns one ``WorkflowState`` row. Rows move forward only:

    running -> rate_limited -> continuing
    running -> continuing | failed | completed
    rate_limited -> failed

A continued execution never reuses its predecessor's row; it starts a new
one with ``parent_workflow_id`` pointing back and the same ``batch_id``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select

from ..db import db_models, get_session
from ..db.workflow import WorkflowStatus
from ..errors import InvalidTransitionError
from ..logging import logger
from ..utils.datetime_utils import days_ago, ensure_utc, now_utc

ALLOWED_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.RUNNING: frozenset(
        {
            WorkflowStatus.RUNNING,
            WorkflowStatus.RATE_LIMITED,
            WorkflowStatus.CONTINUING,
            WorkflowStatus.FAILED,
            WorkflowStatus.COMPLETED,
        }
    ),
    WorkflowStatus.RATE_LIMITED: frozenset(
        {WorkflowStatus.CONTINUING, WorkflowStatus.FAILED}
    ),
    WorkflowStatus.CONTINUING: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.COMPLETED: frozenset(),
}


def compute_progress(processed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(min(processed / total * 100.0, 100.0), 2)


class WorkflowStateStore:
    """Create, advance and query workflow checkpoints."""

    def start(
        self,
        state_id: str,
        workflow_type: str,
        *,
        batch_id: str | None,
        parent_workflow_id: str | None = None,
        continuation_count: int = 0,
        items_processed: int = 0,
        total_items: int = 0,
        api_requests: int = 0,
        last_processed_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> db_models.WorkflowState:
        """Create the checkpoint for a new execution.

        A redelivered execution gets its existing row back unchanged. Callers
        report the outcome a stopped row recorded instead of running again.
        """
        with get_session() as session:
            existing = session.get(db_models.WorkflowState, state_id)
            if existing is not None:
                logger.warning(
                    "workflow_state_reused",
                    state_id=state_id,
                    status=existing.status,
                )
                return existing
            state = db_models.WorkflowState(
                id=state_id,
                workflow_type=workflow_type,
                parent_workflow_id=parent_workflow_id,
                batch_id=batch_id,
                status=WorkflowStatus.RUNNING.value,
                started_at=now_utc(),
                items_processed=items_processed,
                total_items_to_process=total_items,
                progress_percentage=compute_progress(items_processed, total_items),
                continuation_count=continuation_count,
                last_processed_id=last_processed_id,
                api_requests_count=api_requests,
                input_params=params,
            )
            session.add(state)
            session.flush()
            logger.info(
                "workflow_state_started",
                state_id=state_id,
                workflow_type=workflow_type,
                batch_id=batch_id,
                parent_workflow_id=parent_workflow_id,
                continuation_count=continuation_count,
            )
            return state

    def transition(
        self,
        state_id: str,
        status: WorkflowStatus,
        **fields: Any,
    ) -> db_models.WorkflowState:
        """Move a checkpoint to ``status`` and apply ``fields``.

        Raises:
            InvalidTransitionError: If the row is missing or the move goes backwards
        """
        with get_session() as session:
            state = session.get(db_models.WorkflowState, state_id)
            if state is None:
                raise InvalidTransitionError(f"Workflow state {state_id} does not exist")
            current = WorkflowStatus(state.status)
            if status not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Workflow state {state_id} cannot move from {current.value} to {status.value}"
                )
            state.status = status.value
            for key, value in fields.items():
                setattr(state, key, value)
            if "items_processed" in fields or "total_items_to_process" in fields:
                state.progress_percentage = compute_progress(
                    state.items_processed, state.total_items_to_process
                )
            if status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CONTINUING):
                state.completed_at = now_utc()
            if status == WorkflowStatus.COMPLETED:
                state.progress_percentage = 100.0
            session.flush()
            if current != status:
                logger.info(
                    "workflow_state_transition",
                    state_id=state_id,
                    from_status=current.value,
                    to_status=status.value,
                    items_processed=state.items_processed,
                )
            return state

    def checkpoint(
        self,
        state_id: str,
        *,
        items_processed: int,
        api_requests: int,
        last_processed_id: str | None = None,
        total_items: int | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> db_models.WorkflowState:
        """Record progress after a page without changing the status."""
        fields: dict[str, Any] = {
            "items_processed": items_processed,
            "api_requests_count": api_requests,
            "last_processed_id": last_processed_id,
        }
        if total_items is not None:
            fields["total_items_to_process"] = total_items
        if metrics is not None:
            fields["performance_metrics"] = metrics
        return self.transition(state_id, WorkflowStatus.RUNNING, **fields)

    def mark_rate_limited(self, state_id: str, error_message: str) -> db_models.WorkflowState:
        return self.transition(state_id, WorkflowStatus.RATE_LIMITED, error_message=error_message)

    def mark_continuing(
        self,
        state_id: str,
        *,
        continuation_count: int,
        metrics: dict[str, Any] | None = None,
    ) -> db_models.WorkflowState:
        fields: dict[str, Any] = {"continuation_count": continuation_count}
        if metrics is not None:
            fields["performance_metrics"] = metrics
        return self.transition(state_id, WorkflowStatus.CONTINUING, **fields)

    def complete(
        self,
        state_id: str,
        *,
        items_processed: int,
        api_requests: int,
        result_summary: dict[str, Any] | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> db_models.WorkflowState:
        return self.transition(
            state_id,
            WorkflowStatus.COMPLETED,
            items_processed=items_processed,
            api_requests_count=api_requests,
            result_summary=result_summary,
            performance_metrics=metrics,
        )

    def fail(
        self,
        state_id: str,
        error_message: str,
        *,
        metrics: dict[str, Any] | None = None,
    ) -> db_models.WorkflowState:
        fields: dict[str, Any] = {"error_message": error_message[:2000]}
        if metrics is not None:
            fields["performance_metrics"] = metrics
        return self.transition(state_id, WorkflowStatus.FAILED, **fields)

    def get(self, state_id: str) -> db_models.WorkflowState | None:
        with get_session() as session:
            return session.get(db_models.WorkflowState, state_id)

    def list_by_type(
        self,
        workflow_type: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[db_models.WorkflowState]:
        """Checkpoints of one type whose ``created_at`` falls in [since, until)."""
        model = db_models.WorkflowState
        stmt = select(model).where(model.workflow_type == workflow_type)
        if since is not None:
            stmt = stmt.where(model.created_at >= since)
        if until is not None:
            stmt = stmt.where(model.created_at < until)
        with get_session() as session:
            return list(session.scalars(stmt.order_by(model.created_at, model.id)))

    def get_lineage(self, batch_id: str, workflow_type: str | None = None) -> list[db_models.WorkflowState]:
        """All executions of a batch in continuation order."""
        model = db_models.WorkflowState
        stmt = select(model).where(model.batch_id == batch_id)
        if workflow_type is not None:
            stmt = stmt.where(model.workflow_type == workflow_type)
        stmt = stmt.order_by(model.continuation_count, model.started_at, model.id)
        with get_session() as session:
            return list(session.scalars(stmt))

    def get_last_run(self, workflow_type: str) -> db_models.WorkflowState | None:
        model = db_models.WorkflowState
        stmt = (
            select(model)
            .where(model.workflow_type == workflow_type)
            .order_by(model.started_at.desc())
            .limit(1)
        )
        with get_session() as session:
            return session.scalars(stmt).first()

    def get_statistics(self, workflow_type: str, days: int) -> dict[str, Any]:
        """Run counts per status and totals for the last ``days`` days."""
        model = db_models.WorkflowState
        since = days_ago(days)
        with get_session() as session:
            rows = session.execute(
                select(
                    model.status,
                    func.count(model.id),
                    func.coalesce(func.sum(model.items_processed), 0),
                    func.coalesce(func.sum(model.api_requests_count), 0),
                )
                .where(model.workflow_type == workflow_type, model.started_at >= since)
                .group_by(model.status)
            ).all()
        by_status = {status: int(count) for status, count, _, _ in rows}
        return {
            "workflow_type": workflow_type,
            "days": days,
            "total_runs": sum(by_status.values()),
            "by_status": by_status,
            "items_processed": int(sum(items for _, _, items, _ in rows)),
            "api_requests": int(sum(requests for _, _, _, requests in rows)),
        }

    def delete_older_than(self, days: int, workflow_type: str | None = None) -> int:
        """Delete terminal checkpoints created more than ``days`` days ago."""
        model = db_models.WorkflowState
        stmt = delete(model).where(
            model.created_at < days_ago(days),
            model.status.in_(
                [
                    WorkflowStatus.COMPLETED.value,
                    WorkflowStatus.FAILED.value,
                    WorkflowStatus.CONTINUING.value,
                ]
            ),
        )
        if workflow_type is not None:
            stmt = stmt.where(model.workflow_type == workflow_type)
        with get_session() as session:
            deleted = session.execute(stmt).rowcount or 0
        logger.info(
            "workflow_states_deleted",
            days=days,
            workflow_type=workflow_type,
            count=deleted,
        )
        return deleted

    def mark_stale_running(self, older_than: timedelta, reason: str) -> list[str]:
        """Fail ``running`` checkpoints that have not moved for ``older_than``."""
        model = db_models.WorkflowState
        threshold = now_utc() - older_than
        marked: list[str] = []
        with get_session() as session:
            stale = session.scalars(
                select(model).where(model.status == WorkflowStatus.RUNNING.value)
            ).all()
            for state in stale:
                if ensure_utc(state.updated_at) >= threshold:
                    continue
                state.status = WorkflowStatus.FAILED.value
                state.completed_at = now_utc()
                state.error_message = reason
                marked.append(state.id)
                logger.warning(
                    "marking_stale_workflow_interrupted",
                    state_id=state.id,
                    workflow_type=state.workflow_type,
                    started_at=str(state.started_at),
                )
        return marked
