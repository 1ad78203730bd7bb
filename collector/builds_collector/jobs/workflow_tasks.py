"""The generic Celery task that hosts one workflow execution."""

from __future__ import annotations

from typing import Any

from celery import Task, shared_task

from ..errors import classify_error, is_retryable
from ..logging import execution_context, logger
from ..orchestration import ContinueAsNew, continuation_id, get_worker_resources
from ..orchestration.celery_runtime import RUN_WORKFLOW_TASK, CeleryExecutionContext, send_workflow
from ..orchestration.registry import get_workflow

RETRY_COUNTDOWN_SECONDS = 30


def execution_id_for(task_id: str, retries: int) -> str:
    """Each retry of a task is a separate execution with its own checkpoint."""
    return task_id if retries == 0 else f"{task_id}-r{retries}"


@shared_task(name=RUN_WORKFLOW_TASK, bind=True, acks_late=True)
def run_workflow(
    self,
    workflow_name: str,
    params: dict[str, Any],
    lineage: list[str] | None = None,
    queue: str | None = None,
    max_attempts: int = 1,
) -> dict[str, Any]:
    """Run one workflow execution and report it as an envelope.

    Returns one of:
        {"status": "completed", "result": ...}
        {"status": "continued", "continued_as": <task id>}
        {"status": "failed", "error": ..., "error_type": ...}
    """
    task_id = self.request.id
    execution_id = execution_id_for(task_id, self.request.retries)
    lineage = list(lineage or [task_id])
    ctx = CeleryExecutionContext(workflow_name, execution_id, lineage, get_worker_resources())
    with execution_context(workflow=workflow_name, execution_id=execution_id, root_id=ctx.root_id):
        return _run_execution(self, ctx, params, queue, max_attempts)


def _run_execution(
    task: Task,
    ctx: CeleryExecutionContext,
    params: dict[str, Any],
    queue: str | None,
    max_attempts: int,
) -> dict[str, Any]:
    retries = task.request.retries
    logger.info("workflow_task_started", attempt=retries + 1, max_attempts=max_attempts)
    try:
        result = get_workflow(ctx.workflow_name)(ctx, params)
    except ContinueAsNew as cont:
        next_id = continuation_id(ctx.execution_id)
        send_workflow(
            cont.workflow_name,
            cont.params,
            task_id=next_id,
            queue=queue or ctx.resources.settings.workflow_queue,
            lineage=list(ctx.lineage),
            max_attempts=max_attempts,
            countdown=cont.delay or None,
        )
        logger.info("workflow_continued_as_new", continued_as=next_id, delay=cont.delay)
        return {"status": "continued", "continued_as": next_id}
    except Exception as exc:
        error_type = classify_error(exc)
        if is_retryable(exc) and retries + 1 < max_attempts:
            logger.warning("workflow_task_retrying", error=str(exc), error_type=error_type.value)
            raise task.retry(
                exc=exc,
                countdown=RETRY_COUNTDOWN_SECONDS * 2 ** retries,
                max_retries=max_attempts - 1,
            )
        logger.error("workflow_task_failed", error=str(exc), error_type=error_type.value)
        return {"status": "failed", "error": str(exc), "error_type": error_type.value}

    if isinstance(result, dict) and result.get("continued_as"):
        # A redelivered execution that had already handed off to its successor
        logger.info("workflow_already_continued", continued_as=result["continued_as"])
        return {"status": "continued", "continued_as": result["continued_as"]}

    logger.info("workflow_task_completed")
    return {"status": "completed", "result": result}
