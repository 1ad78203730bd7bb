"""
Execution substrate interface shared by the Celery and in-process runtimes.

Workflow functions receive an :class:`ExecutionContext` and only talk to the
outside world through it: activities (retried under a :class:`RetryPolicy`),
child executions (awaited with :meth:`ExecutionContext.wait_any`),
continue-as-new and cancellation checks.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, NoReturn, Sequence

from ..errors import ErrorType
from .activities import ActivityOptions, RetryPolicy, run_activity


_CONTINUATION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "builds-collector/continue-as-new")


def continuation_id(execution_id: str) -> str:
    """Execution id of the continue-as-new successor of ``execution_id``.

    Derived from the predecessor so a redelivered execution names the same
    successor again.
    """
    return uuid.uuid5(_CONTINUATION_NAMESPACE, execution_id).hex


@dataclass(frozen=True)
class ChildOptions:
    execution_timeout: float | None = None
    retry_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=1))
    # Celery queue the child is routed to; ignored in-process.
    task_queue: str | None = None


class ContinueAsNew(Exception):
    """Raised by a workflow to replace its execution with a fresh one."""

    def __init__(self, workflow_name: str, params: dict[str, Any], delay: float = 0.0) -> None:
        super().__init__(f"continue {workflow_name} as new in {delay:.1f}s")
        self.workflow_name = workflow_name
        self.params = params
        self.delay = max(delay, 0.0)


@dataclass
class ChildResult:
    child_id: str
    succeeded: bool
    value: Any = None
    error: str | None = None
    error_type: ErrorType | None = None

    @property
    def rate_limited(self) -> bool:
        return self.error_type in (ErrorType.RATE_LIMIT, ErrorType.QUOTA_EXCEEDED)


class ChildHandle(ABC):
    """Reference to a started child execution."""

    def __init__(self, child_id: str) -> None:
        self.child_id = child_id

    @abstractmethod
    def done(self) -> bool: ...

    @abstractmethod
    def result(self) -> ChildResult:
        """Outcome of a finished child. Only valid once :meth:`done` is true."""


class ExecutionContext(ABC):
    """What a running workflow execution can do."""

    def __init__(
        self,
        workflow_name: str,
        execution_id: str,
        lineage: Sequence[str],
        resources: Any,
    ) -> None:
        self.workflow_name = workflow_name
        self.execution_id = execution_id
        self.lineage = tuple(lineage)
        self.resources = resources

    @property
    def root_id(self) -> str:
        return self.lineage[0]

    def execute_activity(
        self,
        fn: Callable[..., Any],
        *args: Any,
        options: ActivityOptions | None = None,
    ) -> Any:
        return run_activity(
            fn,
            *args,
            options=options or ActivityOptions(),
            execution_id=self.execution_id,
            resources=self.resources,
            is_cancelled=self.is_cancelled,
        )

    @abstractmethod
    def start_child(
        self,
        workflow_name: str,
        params: dict[str, Any],
        *,
        child_id: str,
        options: ChildOptions | None = None,
    ) -> ChildHandle: ...

    @abstractmethod
    def wait_any(self, handles: Sequence[ChildHandle]) -> ChildHandle:
        """Block until one of ``handles`` is done and return it."""

    def wait(self, handle: ChildHandle) -> ChildResult:
        return self.wait_any([handle]).result()

    def continue_as_new(self, params: dict[str, Any], delay: float = 0.0) -> NoReturn:
        raise ContinueAsNew(self.workflow_name, params, delay)

    @abstractmethod
    def is_cancelled(self) -> bool: ...

    def now(self) -> float:
        return time.time()
