"""Celery app configuration for the builds collector."""

from __future__ import annotations

from datetime import timedelta

from celery import Celery, signals
from celery.schedules import crontab
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .logging import logger

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_track_started": True,
    "worker_prefetch_multiplier": 1,
    "task_acks_late": True,
    "task_time_limit": 43200,       # 12 hours hard limit
    "task_soft_time_limit": 42600,  # 11h 50m soft limit
    "result_expires": 7 * 24 * 3600,
    "task_default_queue": settings.workflow_queue,
}

app = Celery(
    "builds-collector",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["builds_collector.jobs.tasks"],
)
app.conf.update(**celery_config)
app.conf.task_routes = {
    "start_pipeline": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
    "run_statistics_for_key": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
    "resume_from_checkpoint": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
    "cancel_workflow": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
    "cleanup_workflow_states": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
}
app.conf.beat_schedule = {
    "weekly-builds-pipeline": {
        "task": "start_pipeline",
        "schedule": crontab(minute=0, hour=6, day_of_week="wed"),
        "options": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
    },
    "daily-workflow-state-cleanup": {
        "task": "cleanup_workflow_states",
        "schedule": crontab(minute=30, hour=4),
        "options": {"queue": settings.workflow_queue, "routing_key": settings.workflow_queue},
    },
}


def mark_stale_states_interrupted(older_than: timedelta, reason: str) -> list[str]:
    """
    Fail checkpoints stuck in ``running``.

    Covers executions whose worker was killed mid-run: their rows would
    otherwise stay ``running`` forever.
    """
    from .persistence import WorkflowStateStore

    try:
        marked = WorkflowStateStore().mark_stale_running(older_than, reason)
    except SQLAlchemyError as exc:
        logger.exception("failed_to_mark_stale_states", error=str(exc))
        return []
    if marked:
        logger.info("stale_states_marked_interrupted", count=len(marked))
    else:
        logger.debug("no_stale_states_found")
    return marked


@signals.worker_ready.connect
def on_worker_ready(sender=None, **kwargs):
    """Called when the worker is ready. Fail checkpoints left running by a dead worker."""
    logger.info("celery_worker_ready", worker=sender.hostname if sender else "unknown")
    mark_stale_states_interrupted(
        timedelta(hours=settings.retention.stale_running_hours),
        "Execution was interrupted (worker restart or container killed)",
    )


@signals.worker_shutting_down.connect
def on_worker_shutting_down(sender=None, **kwargs):
    """Called when the worker is shutting down. Fail checkpoints that already went stale."""
    logger.info("celery_worker_shutting_down", worker=sender or "unknown")
    mark_stale_states_interrupted(
        timedelta(hours=settings.retention.stale_running_hours),
        "Execution was interrupted (worker shutdown)",
    )
