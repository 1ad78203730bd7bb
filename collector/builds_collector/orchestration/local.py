"""
In-process runtime.

Runs workflows on a thread pool of the current process. Children are pool
futures, wait-any is ``concurrent.futures.wait(FIRST_COMPLETED)`` and
continue-as-new loops inside :meth:`LocalRuntime.execute` under the
successor id from :func:`continuation_id`. Used for synchronous runs and in tests.
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Sequence

from ..errors import ErrorType, classify_error, is_retryable
from ..logging import execution_context, logger
from .registry import get_workflow
from .substrate import (
    ChildHandle,
    ChildOptions,
    ChildResult,
    ContinueAsNew,
    ExecutionContext,
    continuation_id,
)


def new_execution_id() -> str:
    return uuid.uuid4().hex


class LocalChildHandle(ChildHandle):
    def __init__(self, child_id: str, future: Future, deadline: float | None) -> None:
        super().__init__(child_id)
        self.future = future
        self.deadline = deadline
        self._timed_out: ChildResult | None = None

    def done(self) -> bool:
        return self._timed_out is not None or self.future.done()

    def expire(self) -> None:
        self._timed_out = ChildResult(
            child_id=self.child_id,
            succeeded=False,
            error=f"Child {self.child_id} exceeded its execution timeout",
            error_type=ErrorType.TIMEOUT,
        )

    def result(self) -> ChildResult:
        if self._timed_out is not None:
            return self._timed_out
        return self.future.result()


class LocalExecutionContext(ExecutionContext):
    def __init__(
        self,
        runtime: LocalRuntime,
        workflow_name: str,
        execution_id: str,
        lineage: Sequence[str],
    ) -> None:
        super().__init__(workflow_name, execution_id, lineage, runtime.resources)
        self.runtime = runtime

    def start_child(
        self,
        workflow_name: str,
        params: dict[str, Any],
        *,
        child_id: str,
        options: ChildOptions | None = None,
    ) -> LocalChildHandle:
        options = options or ChildOptions()
        future = self.runtime.submit(
            self.runtime.run_child,
            workflow_name,
            params,
            child_id,
            (*self.lineage, child_id),
            options,
        )
        deadline = (
            time.monotonic() + options.execution_timeout
            if options.execution_timeout is not None
            else None
        )
        logger.debug("child_started", parent=self.execution_id, child_id=child_id, workflow=workflow_name)
        return LocalChildHandle(child_id, future, deadline)

    def wait_any(self, handles: Sequence[ChildHandle]) -> ChildHandle:
        if not handles:
            raise ValueError("wait_any needs at least one handle")
        while True:
            for handle in handles:
                if handle.done():
                    return handle
            deadlines = [h.deadline for h in handles if isinstance(h, LocalChildHandle) and h.deadline]
            timeout = max(min(deadlines) - time.monotonic(), 0.0) if deadlines else None
            wait(
                [h.future for h in handles if isinstance(h, LocalChildHandle)],
                timeout=timeout,
                return_when=FIRST_COMPLETED,
            )
            now = time.monotonic()
            for handle in handles:
                if (
                    isinstance(handle, LocalChildHandle)
                    and handle.deadline is not None
                    and now >= handle.deadline
                    and not handle.future.done()
                ):
                    handle.expire()
                    self.runtime.cancel(handle.child_id)
                    logger.warning("child_timed_out", parent=self.execution_id, child_id=handle.child_id)

    def is_cancelled(self) -> bool:
        return self.runtime.is_cancelled(self.lineage)


class LocalRuntime:
    """Thread-pool backed workflow runtime."""

    def __init__(
        self,
        resources: Any,
        *,
        max_workers: int = 16,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.resources = resources
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="workflow")
        self._cancelled: set[str] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(fn, *args)

    def execute(
        self,
        workflow_name: str,
        params: dict[str, Any],
        *,
        execution_id: str | None = None,
        lineage: Sequence[str] | None = None,
    ) -> Any:
        """Run a workflow to completion, following its continue-as-new chain."""
        execution_id = execution_id or new_execution_id()
        lineage = tuple(lineage or (execution_id,))
        while True:
            ctx = LocalExecutionContext(self, workflow_name, execution_id, lineage)
            try:
                with execution_context(workflow=workflow_name, execution_id=execution_id, root_id=lineage[0]):
                    return get_workflow(workflow_name)(ctx, params)
            except ContinueAsNew as cont:
                next_id = continuation_id(execution_id)
                logger.info(
                    "workflow_continued_as_new",
                    workflow=workflow_name,
                    execution_id=execution_id,
                    continued_as=next_id,
                    delay=cont.delay,
                )
                if cont.delay:
                    self._sleep(cont.delay)
                workflow_name, params, execution_id = cont.workflow_name, cont.params, next_id

    def start(self, workflow_name: str, params: dict[str, Any]) -> tuple[str, Future]:
        """Run a workflow in the background; returns its root id and future."""
        execution_id = new_execution_id()
        return execution_id, self.submit(self.execute, workflow_name, params, execution_id=execution_id)

    def run_child(
        self,
        workflow_name: str,
        params: dict[str, Any],
        child_id: str,
        lineage: Sequence[str],
        options: ChildOptions,
    ) -> ChildResult:
        """Run a child under its retry policy and report the outcome; never raises."""
        max_attempts = max(options.retry_policy.max_attempts, 1)
        attempt = 0
        while True:
            attempt += 1
            execution_id = child_id if attempt == 1 else f"{child_id}-a{attempt}"
            try:
                value = self.execute(workflow_name, params, execution_id=execution_id, lineage=lineage)
                return ChildResult(child_id=child_id, succeeded=True, value=value)
            except Exception as exc:
                error_type = classify_error(exc)
                logger.warning(
                    "child_failed",
                    child_id=child_id,
                    workflow=workflow_name,
                    attempt=attempt,
                    error=str(exc),
                    error_type=error_type.value,
                )
                if attempt >= max_attempts or not is_retryable(exc) or self.is_cancelled(lineage):
                    return ChildResult(
                        child_id=child_id,
                        succeeded=False,
                        error=str(exc),
                        error_type=error_type,
                    )
            policy = options.retry_policy
            self._sleep(
                min(
                    policy.initial_interval * policy.backoff_coefficient ** (attempt - 1),
                    policy.max_interval,
                )
            )

    def cancel(self, execution_id: str) -> None:
        """Cancel an execution and everything it started."""
        with self._lock:
            self._cancelled.add(execution_id)
        logger.info("workflow_cancel_requested", execution_id=execution_id)

    def is_cancelled(self, lineage: Sequence[str]) -> bool:
        with self._lock:
            return any(ident in self._cancelled for ident in lineage)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
