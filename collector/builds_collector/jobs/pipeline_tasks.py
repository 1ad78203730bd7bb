"""Celery tasks that start pipeline, statistics and resumed stage executions."""

from __future__ import annotations

import uuid
from typing import Any

from celery import shared_task

from ..config import settings
from ..db.workflow import WorkflowStatus
from ..errors import ConfigurationError
from ..logging import logger
from ..models import StatisticsKey
from ..orchestration.celery_runtime import request_cancel, send_workflow
from ..orchestration.coordinator import PIPELINE_WORKFLOW, PipelineParams
from ..orchestration.cursor import ResumableCursor, StageParams
from ..orchestration.statistics import STATISTICS_WORKFLOW
from ..persistence import WorkflowStateStore

RESUMABLE_WORKFLOWS = ("rankings", "reports", "builds")
RESUMABLE_STATUSES = (WorkflowStatus.FAILED.value, WorkflowStatus.RATE_LIMITED.value)


@shared_task(name="start_pipeline")
def start_pipeline(params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Start a pipeline execution; also the weekly beat entry."""
    payload = PipelineParams.model_validate(params or {}).model_dump(mode="json")
    execution_id = uuid.uuid4().hex
    send_workflow(
        PIPELINE_WORKFLOW,
        payload,
        task_id=execution_id,
        queue=settings.workflow_queue,
        lineage=[execution_id],
    )
    logger.info("pipeline_enqueued", execution_id=execution_id, batch_id=payload.get("batch_id"))
    return {"execution_id": execution_id}


@shared_task(name="run_statistics_for_key")
def run_statistics_for_key(class_name: str, spec_name: str, encounter_id: int) -> dict[str, Any]:
    """Recompute the statistics of one key outside a pipeline run."""
    key = StatisticsKey(class_name=class_name, spec_name=spec_name, encounter_id=encounter_id)
    execution_id = uuid.uuid4().hex
    send_workflow(
        STATISTICS_WORKFLOW,
        key.model_dump(),
        task_id=execution_id,
        queue=settings.batch_queue,
        lineage=[execution_id],
    )
    logger.info("statistics_enqueued", execution_id=execution_id, key=key.label)
    return {"execution_id": execution_id, "key": key.label}


def cursor_from_state(state) -> ResumableCursor:
    """Rebuild a cursor from a checkpoint row.

    The row keeps only the handled total, so the resumed execution books all
    of it as processed and starts at that offset.
    """
    return ResumableCursor(
        offset=state.items_processed,
        processed=state.items_processed,
        api_requests=state.api_requests_count,
        continuation_count=state.continuation_count + 1,
        parent_state_id=state.id,
        total_items=state.total_items_to_process,
    )


@shared_task(name="resume_from_checkpoint")
def resume_from_checkpoint(state_id: str) -> dict[str, Any]:
    """Start a new stage execution where a failed or rate-limited one stopped.

    Raises:
        ConfigurationError: If the checkpoint is missing, is not a stage, or
            did not stop early
    """
    state = WorkflowStateStore().get(state_id)
    if state is None:
        raise ConfigurationError(f"Workflow state {state_id} does not exist")
    if state.workflow_type not in RESUMABLE_WORKFLOWS:
        raise ConfigurationError(f"Workflow type {state.workflow_type} cannot be resumed")
    if state.status not in RESUMABLE_STATUSES:
        raise ConfigurationError(f"Workflow state {state_id} is {state.status}, nothing to resume")
    if not state.batch_id:
        raise ConfigurationError(f"Workflow state {state_id} has no batch id")

    # Specs, dungeons and page sizes as the stopped execution had them
    params = StageParams.model_validate(
        {**(state.input_params or {}), "batch_id": state.batch_id}
    ).model_copy(update={"cursor": cursor_from_state(state)})
    execution_id = uuid.uuid4().hex
    send_workflow(
        state.workflow_type,
        params.model_dump(mode="json"),
        task_id=execution_id,
        queue=settings.children_queue,
        lineage=[execution_id],
    )
    logger.info(
        "workflow_resumed_from_checkpoint",
        state_id=state_id,
        workflow_type=state.workflow_type,
        execution_id=execution_id,
        offset=params.cursor.offset,
    )
    return {"execution_id": execution_id, "workflow_type": state.workflow_type, "offset": params.cursor.offset}


@shared_task(name="cancel_workflow")
def cancel_workflow(execution_id: str) -> dict[str, Any]:
    """Cancel an execution together with every child it started."""
    request_cancel(execution_id)
    return {"execution_id": execution_id, "cancel_requested": True}
