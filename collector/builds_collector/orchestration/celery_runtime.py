"""
Celery-backed execution context.

Every workflow execution is one ``run_workflow`` task. Children are sent to
a dedicated queue with ``send_task`` and awaited by polling their
``AsyncResult``; a child that continued-as-new returns a
``{"status": "continued", "continued_as": <task id>}`` marker which the
handle follows until the chain ends. Cancellation is a Redis key per
execution id, checked along the execution's lineage.
"""

from __future__ import annotations

import time
from typing import Any, Sequence

import redis
from celery.result import AsyncResult

from ..celery_app import app as celery_app
from ..config import settings
from ..errors import ErrorType
from ..logging import logger
from .substrate import ChildHandle, ChildOptions, ChildResult, ExecutionContext

CANCEL_KEY_PREFIX = "workflow:cancel:"
CANCEL_KEY_TTL_SECONDS = 7 * 24 * 3600

RUN_WORKFLOW_TASK = "run_workflow"


def _redis() -> redis.Redis:
    return redis.from_url(settings.redis_url)


def request_cancel(execution_id: str) -> None:
    """Ask an execution (and everything it started) to stop."""
    try:
        _redis().set(f"{CANCEL_KEY_PREFIX}{execution_id}", "1", ex=CANCEL_KEY_TTL_SECONDS)
        logger.info("workflow_cancel_requested", execution_id=execution_id)
    except redis.RedisError as exc:
        logger.error("workflow_cancel_failed", execution_id=execution_id, error=str(exc))
        raise


def is_lineage_cancelled(lineage: Sequence[str]) -> bool:
    keys = [f"{CANCEL_KEY_PREFIX}{ident}" for ident in lineage]
    try:
        return bool(_redis().exists(*keys))
    except redis.RedisError as exc:
        logger.warning("workflow_cancel_check_failed", lineage=list(lineage), error=str(exc))
        return False


def send_workflow(
    workflow_name: str,
    params: dict[str, Any],
    *,
    task_id: str,
    queue: str,
    lineage: Sequence[str] | None = None,
    max_attempts: int = 1,
    countdown: float | None = None,
) -> AsyncResult:
    return celery_app.send_task(
        RUN_WORKFLOW_TASK,
        kwargs={
            "workflow_name": workflow_name,
            "params": params,
            "lineage": list(lineage) if lineage else None,
            "queue": queue,
            "max_attempts": max_attempts,
        },
        task_id=task_id,
        queue=queue,
        routing_key=queue,
        countdown=countdown,
    )


class CeleryChildHandle(ChildHandle):
    def __init__(self, child_id: str, deadline: float | None) -> None:
        super().__init__(child_id)
        self.task_id = child_id
        self.deadline = deadline
        self._result: ChildResult | None = None

    def done(self) -> bool:
        while self._result is None:
            async_result = AsyncResult(self.task_id, app=celery_app)
            if not async_result.ready():
                if self.deadline is not None and time.monotonic() >= self.deadline:
                    self._expire()
                    return True
                return False
            if async_result.failed():
                self._result = ChildResult(
                    child_id=self.child_id,
                    succeeded=False,
                    error=str(async_result.result),
                    error_type=ErrorType.UNKNOWN,
                )
                break
            outcome = async_result.result or {}
            if outcome.get("status") == "continued":
                self.task_id = outcome["continued_as"]
                continue
            if outcome.get("status") == "failed":
                self._result = ChildResult(
                    child_id=self.child_id,
                    succeeded=False,
                    error=outcome.get("error"),
                    error_type=ErrorType(outcome.get("error_type", ErrorType.UNKNOWN.value)),
                )
            else:
                self._result = ChildResult(
                    child_id=self.child_id,
                    succeeded=True,
                    value=outcome.get("result"),
                )
        return True

    def _expire(self) -> None:
        logger.warning("child_timed_out", child_id=self.child_id, task_id=self.task_id)
        celery_app.control.revoke(self.task_id)
        request_cancel(self.child_id)
        self._result = ChildResult(
            child_id=self.child_id,
            succeeded=False,
            error=f"Child {self.child_id} exceeded its execution timeout",
            error_type=ErrorType.TIMEOUT,
        )

    def result(self) -> ChildResult:
        if self._result is None:
            raise RuntimeError(f"Child {self.child_id} has not finished")
        return self._result


class CeleryExecutionContext(ExecutionContext):
    def __init__(
        self,
        workflow_name: str,
        execution_id: str,
        lineage: Sequence[str],
        resources: Any,
        *,
        poll_interval: float | None = None,
    ) -> None:
        super().__init__(workflow_name, execution_id, lineage, resources)
        self.poll_interval = poll_interval or settings.child_poll_interval_seconds

    def start_child(
        self,
        workflow_name: str,
        params: dict[str, Any],
        *,
        child_id: str,
        options: ChildOptions | None = None,
    ) -> CeleryChildHandle:
        options = options or ChildOptions()
        send_workflow(
            workflow_name,
            params,
            task_id=child_id,
            queue=options.task_queue or settings.children_queue,
            lineage=(*self.lineage, child_id),
            max_attempts=options.retry_policy.max_attempts,
        )
        logger.info("child_started", parent=self.execution_id, child_id=child_id, workflow=workflow_name)
        deadline = (
            time.monotonic() + options.execution_timeout
            if options.execution_timeout is not None
            else None
        )
        return CeleryChildHandle(child_id, deadline)

    def wait_any(self, handles: Sequence[ChildHandle]) -> ChildHandle:
        if not handles:
            raise ValueError("wait_any needs at least one handle")
        while True:
            for handle in handles:
                if handle.done():
                    return handle
            time.sleep(self.poll_interval)

    def is_cancelled(self) -> bool:
        return is_lineage_cancelled(self.lineage)
