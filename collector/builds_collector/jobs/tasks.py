"""Celery tasks of the builds collector.

This module re-exports all tasks from specialized modules for Celery discovery:
- workflow_tasks: the generic workflow execution task
- pipeline_tasks: pipeline, statistics, resume and cancel entry points
- maintenance_tasks: checkpoint retention cleanup
"""

from __future__ import annotations

# Re-export all tasks for Celery discovery
from .workflow_tasks import run_workflow
from .pipeline_tasks import (
    cancel_workflow,
    resume_from_checkpoint,
    run_statistics_for_key,
    start_pipeline,
)
from .maintenance_tasks import cleanup_workflow_states

__all__ = [
    "run_workflow",
    "start_pipeline",
    "run_statistics_for_key",
    "resume_from_checkpoint",
    "cancel_workflow",
    "cleanup_workflow_states",
]
