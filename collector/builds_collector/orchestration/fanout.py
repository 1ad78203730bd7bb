"""Bounded scatter/gather over child executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from ..logging import logger
from .substrate import ChildHandle, ChildOptions, ChildResult, ExecutionContext


@dataclass
class FanOutResult:
    total: int
    launched: int = 0
    results: list[ChildResult] = field(default_factory=list)
    cancelled: bool = False
    max_active: int = 0

    @property
    def succeeded(self) -> list[ChildResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failures(self) -> list[ChildResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def rate_limited(self) -> bool:
        return any(r.rate_limited for r in self.failures)


def fan_out(
    ctx: ExecutionContext,
    workflow_name: str,
    batches: Sequence[dict[str, Any]],
    *,
    max_concurrency: int,
    child_id: Callable[[int], str],
    options: ChildOptions | None = None,
    on_complete: Callable[[ChildResult, FanOutResult], None] | None = None,
) -> FanOutResult:
    """Run one child per batch with at most ``max_concurrency`` in flight.

    A failed child is recorded and never stops its siblings. Once ``ctx`` is
    cancelled no further child is launched, but in-flight children are still
    awaited and recorded.
    """
    if max_concurrency <= 0:
        raise ValueError("max_concurrency must be positive")

    outcome = FanOutResult(total=len(batches))
    in_flight: list[ChildHandle] = []
    next_index = 0

    while next_index < len(batches) or in_flight:
        while (
            len(in_flight) < max_concurrency
            and next_index < len(batches)
            and not outcome.cancelled
        ):
            if ctx.is_cancelled():
                outcome.cancelled = True
                logger.info(
                    "fan_out_cancelled",
                    execution_id=ctx.execution_id,
                    launched=outcome.launched,
                    remaining=len(batches) - next_index,
                )
                break
            handle = ctx.start_child(
                workflow_name,
                batches[next_index],
                child_id=child_id(next_index),
                options=options,
            )
            in_flight.append(handle)
            next_index += 1
            outcome.launched += 1
            outcome.max_active = max(outcome.max_active, len(in_flight))

        if not in_flight:
            break

        finished = ctx.wait_any(in_flight)
        in_flight.remove(finished)
        child_result = finished.result()
        outcome.results.append(child_result)
        if not child_result.succeeded:
            logger.warning(
                "fan_out_child_failed",
                execution_id=ctx.execution_id,
                child_id=child_result.child_id,
                error=child_result.error,
                error_type=child_result.error_type.value if child_result.error_type else None,
            )
        if on_complete is not None:
            on_complete(child_result, outcome)

    logger.info(
        "fan_out_finished",
        execution_id=ctx.execution_id,
        workflow=workflow_name,
        total=outcome.total,
        launched=outcome.launched,
        succeeded=len(outcome.succeeded),
        failed=len(outcome.failures),
        cancelled=outcome.cancelled,
    )
    return outcome
