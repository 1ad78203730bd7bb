"""Celery housekeeping tasks."""

from __future__ import annotations

from celery import shared_task

from ..config import settings
from ..logging import logger
from ..persistence import WorkflowStateStore


@shared_task(name="cleanup_workflow_states")
def cleanup_workflow_states(days: int | None = None) -> dict:
    """Delete terminal checkpoints older than the retention window.

    Args:
        days: Retention in days (defaults to the configured retention)

    Returns:
        Summary dict with the number of deleted rows
    """
    days = days if days is not None else settings.retention.workflow_state_days
    logger.info("workflow_state_cleanup_started", days=days)
    deleted = WorkflowStateStore().delete_older_than(days)
    logger.info("workflow_state_cleanup_completed", days=days, deleted_count=deleted)
    return {"days": days, "deleted_count": deleted}
