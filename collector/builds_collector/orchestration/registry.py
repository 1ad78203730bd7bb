"""Name -> workflow function registry used by both runtimes."""

from __future__ import annotations

from typing import Any, Callable

from ..errors import ConfigurationError

WorkflowFn = Callable[[Any, dict[str, Any]], Any]

_WORKFLOWS: dict[str, WorkflowFn] = {}


def workflow(name: str) -> Callable[[WorkflowFn], WorkflowFn]:
    """Register ``fn`` as the workflow called ``name``."""

    def decorator(fn: WorkflowFn) -> WorkflowFn:
        if name in _WORKFLOWS and _WORKFLOWS[name] is not fn:
            raise ConfigurationError(f"Workflow {name!r} registered twice")
        _WORKFLOWS[name] = fn
        return fn

    return decorator


def get_workflow(name: str) -> WorkflowFn:
    try:
        return _WORKFLOWS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown workflow {name!r}") from None


def registered_workflows() -> list[str]:
    return sorted(_WORKFLOWS)
