"""
Paged stage execution shared by the rankings, reports and builds stages.

A stage execution walks its pending work one page at a time:

- an empty page completes the stage
- a rate limit discards the current page, marks the checkpoint
  ``rate_limited`` then ``continuing`` and continues-as-new after the
  retry-after hint, resuming at the same offset
- reaching ``max_pages_per_execution`` continues-as-new right away
- otherwise the cursor advances and the checkpoint is updated

Continuations get a new checkpoint row that points back through
``parent_workflow_id`` and shares the batch id.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, NoReturn, Sequence

from ...db.workflow import WorkflowStatus
from ...errors import InvalidTransitionError, PipelineError, classify_error, is_fatal, is_rate_limit
from ...logging import logger
from ...models import ItemOutcome
from ...services.metrics import MetricsCollector
from ...services.rate_budget import refresh_rate_limit
from ..activities import ActivityOptions
from ..cursor import ResumableCursor, StageParams
from ..substrate import ContinueAsNew, ExecutionContext, continuation_id


def recorded_outcome(ctx: ExecutionContext, state: Any) -> dict[str, Any] | None:
    """Outcome an earlier delivery of this execution already recorded.

    Returns None for a row that is still ``running``, so the caller does the
    work. A completed row replays its result summary and a continuing row
    points at its successor.

    Raises:
        InvalidTransitionError: If the earlier delivery failed or stopped on a
            rate limit; the row stays as it is for ``resume_from_checkpoint``
    """
    status = WorkflowStatus(state.status)
    if status == WorkflowStatus.RUNNING:
        return None
    logger.warning("workflow_redelivered", state_id=state.id, status=state.status)
    if status == WorkflowStatus.COMPLETED:
        return {"status": "completed", "state_id": state.id, **(state.result_summary or {})}
    if status == WorkflowStatus.CONTINUING:
        return {
            "status": "continued",
            "state_id": state.id,
            "continued_as": continuation_id(ctx.execution_id),
        }
    raise InvalidTransitionError(
        f"Workflow state {state.id} already stopped as {state.status}: {state.error_message}"
    )


@dataclass
class PageOutcome:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    api_requests: int = 0
    counters: dict[str, Any] = field(default_factory=dict)
    last_id: str | None = None
    # Set when part of the page hit a rate limit after the rest finished.
    rate_limit: PipelineError | None = None

    def add_item(self, item: ItemOutcome) -> None:
        if item.status == "processed":
            self.processed += 1
        elif item.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1
        self.api_requests += item.api_requests
        for name, value in item.counters.items():
            self.counters[name] = self.counters.get(name, 0) + value


class PagedStage(ABC):
    workflow_type: ClassVar[str]
    # Stages that call the upstream API check its point allowance per page
    polls_rate_limit: ClassVar[bool] = False

    def __init__(self, ctx: ExecutionContext, params: StageParams) -> None:
        self.ctx = ctx
        self.params = params
        self.cursor: ResumableCursor = params.cursor.model_copy(deep=True)
        self.settings = ctx.resources.settings
        self.store = ctx.resources.state_store
        self.metrics = MetricsCollector(self.workflow_type)
        self.state_id = f"{self.workflow_type}-{ctx.execution_id}"
        self.activity_options = ActivityOptions.from_config(self.settings.activities, heartbeat=True)

    @property
    @abstractmethod
    def default_page_size(self) -> int: ...

    @property
    @abstractmethod
    def default_max_pages(self) -> int: ...

    @property
    def page_size(self) -> int:
        return self.params.page_size or self.default_page_size

    @property
    def max_pages(self) -> int:
        return self.params.max_pages_per_execution or self.default_max_pages

    @property
    def batch_id(self) -> str:
        return self.params.batch_id

    @abstractmethod
    def count_total(self) -> int:
        """Number of work items of the whole batch."""

    @abstractmethod
    def load_page(self, offset: int, limit: int) -> Sequence[Any]: ...

    @abstractmethod
    def process_page(self, items: Sequence[Any]) -> PageOutcome:
        """Handle one page. Raises a rate-limit error to abandon the page."""

    def process_items(
        self,
        items: Sequence[Any],
        handle: Callable[[Any], ItemOutcome],
        item_id: Callable[[Any], str] = str,
    ) -> PageOutcome:
        """Run ``handle`` per item in order, isolating per-item failures."""
        outcome = PageOutcome()
        for item in items:
            try:
                result = handle(item)
            except Exception as exc:
                if is_rate_limit(exc) or is_fatal(exc):
                    raise
                error_type = classify_error(exc)
                self.metrics.record_error(error_type.value)
                logger.warning(
                    "stage_item_failed",
                    workflow_type=self.workflow_type,
                    state_id=self.state_id,
                    item=item_id(item),
                    error=str(exc),
                    error_type=error_type.value,
                )
                result = ItemOutcome(status="failed", error=str(exc))
            outcome.add_item(result)
            outcome.last_id = item_id(item)
            self.metrics.increment(f"items_{result.status}")
        return outcome

    def run(self) -> dict[str, Any]:
        cursor = self.cursor
        cursor.total_items = self.count_total()
        state = self.store.start(
            self.state_id,
            self.workflow_type,
            batch_id=self.batch_id,
            parent_workflow_id=cursor.parent_state_id,
            continuation_count=cursor.continuation_count,
            items_processed=cursor.items_handled,
            total_items=cursor.total_items,
            api_requests=cursor.api_requests,
            last_processed_id=str(cursor.offset),
            params=self.params.model_dump(mode="json", exclude={"cursor"}),
        )
        recorded = recorded_outcome(self.ctx, state)
        if recorded is not None:
            return recorded
        logger.info(
            "stage_started",
            workflow_type=self.workflow_type,
            state_id=self.state_id,
            batch_id=self.batch_id,
            offset=cursor.offset,
            total_items=cursor.total_items,
            continuation_count=cursor.continuation_count,
        )

        pages = 0
        try:
            while True:
                if self.ctx.is_cancelled():
                    self.store.fail(self.state_id, "cancelled", metrics=self.metrics.snapshot())
                    logger.warning("stage_cancelled", workflow_type=self.workflow_type, state_id=self.state_id)
                    return {"status": "cancelled", **cursor.summary()}

                with self.metrics.time("load_page"):
                    items = self.load_page(cursor.offset, self.page_size)
                if not items:
                    break

                try:
                    if self.polls_rate_limit:
                        self.ctx.execute_activity(refresh_rate_limit, options=self.activity_options)
                    with self.metrics.time("process_page"):
                        outcome = self.process_page(items)
                except PipelineError as exc:
                    if not exc.is_rate_limit:
                        raise
                    self.metrics.record_error(exc.error_type.value)
                    self._continue(rate_limit=exc)

                if outcome.rate_limit is not None:
                    cursor.api_requests += outcome.api_requests
                    cursor.add_counters(outcome.counters)
                    self._continue(rate_limit=outcome.rate_limit)

                self._advance(outcome, len(items))
                pages += 1
                if pages >= self.max_pages and len(items) >= self.page_size:
                    self._continue()
        except ContinueAsNew:
            raise
        except Exception as exc:
            self.metrics.record_error(classify_error(exc).value)
            logger.exception(
                "stage_failed",
                workflow_type=self.workflow_type,
                state_id=self.state_id,
                error=str(exc),
            )
            self.store.fail(self.state_id, str(exc), metrics=self.metrics.snapshot())
            raise

        if cursor.items_handled == 0:
            logger.info("stage_no_pending_work", workflow_type=self.workflow_type, batch_id=self.batch_id)
        summary = cursor.summary()
        self.store.complete(
            self.state_id,
            items_processed=cursor.items_handled,
            api_requests=cursor.api_requests,
            result_summary=summary,
            metrics=self.metrics.snapshot(),
        )
        logger.info("stage_completed", workflow_type=self.workflow_type, state_id=self.state_id, **summary)
        return {"status": "completed", "state_id": self.state_id, **summary}

    def _advance(self, outcome: PageOutcome, page_length: int) -> None:
        cursor = self.cursor
        cursor.offset += page_length
        cursor.processed += outcome.processed
        cursor.failed += outcome.failed
        cursor.skipped += outcome.skipped
        cursor.api_requests += outcome.api_requests
        cursor.add_counters(outcome.counters)
        self.store.checkpoint(
            self.state_id,
            items_processed=cursor.items_handled,
            api_requests=cursor.api_requests,
            last_processed_id=outcome.last_id or str(cursor.offset),
            total_items=cursor.total_items,
            metrics=self.metrics.snapshot(),
        )

    def _continue(self, rate_limit: PipelineError | None = None) -> NoReturn:
        cursor = self.cursor
        next_count = cursor.continuation_count + 1
        delay = 0.0
        if rate_limit is not None:
            delay = rate_limit.retry_after or self.settings.warcraftlogs.default_retry_after_seconds
            self.store.mark_rate_limited(self.state_id, str(rate_limit))
        self.store.mark_continuing(
            self.state_id,
            continuation_count=next_count,
            metrics=self.metrics.snapshot(),
        )
        next_cursor = cursor.model_copy(
            update={"continuation_count": next_count, "parent_state_id": self.state_id}
        )
        logger.info(
            "stage_continuing",
            workflow_type=self.workflow_type,
            state_id=self.state_id,
            offset=next_cursor.offset,
            items_processed=next_cursor.items_handled,
            continuation_count=next_count,
            delay=delay,
            rate_limited=rate_limit is not None,
        )
        params = self.params.model_copy(update={"cursor": next_cursor})
        self.ctx.continue_as_new(params.model_dump(mode="json"), delay=delay)
