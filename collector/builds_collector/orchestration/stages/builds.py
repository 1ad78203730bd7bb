"""
Builds stage and its ``builds_batch`` child.

The stage pages through the reports queued in the batch and splits each
page into child executions of ``report_batch_size`` reports, run through the
fan-out launcher. Each child extracts and stores the player builds of its
reports under its own checkpoint.
"""

from __future__ import annotations

from typing import Any, Sequence

from ...db import get_session
from ...errors import RateLimitError
from ...logging import logger
from ...persistence.reports import count_reports_in_batch, get_report_keys_page
from ...services.player_builds import extract_builds
from ..activities import ActivityOptions, RetryPolicy
from ..cursor import BuildsBatchParams, StageParams
from ..fanout import FanOutResult, fan_out
from ..registry import workflow
from ..substrate import ChildOptions, ChildResult, ExecutionContext
from .base import PagedStage, PageOutcome, recorded_outcome

BUILDS_BATCH_WORKFLOW = "builds_batch"


def merge_batch_result(outcome: PageOutcome, value: dict[str, Any]) -> None:
    outcome.processed += value.get("reports_processed", 0)
    outcome.skipped += value.get("reports_skipped", 0)
    outcome.failed += value.get("reports_failed", 0)
    counters = outcome.counters
    counters["builds_processed"] = counters.get("builds_processed", 0) + value.get("builds_processed", 0)
    counters["reports_processed"] = counters.get("reports_processed", 0) + value.get("reports_processed", 0)
    by_class_spec = counters.setdefault("builds_by_class_spec", {})
    for class_spec, count in (value.get("builds_by_class_spec") or {}).items():
        by_class_spec[class_spec] = by_class_spec.get(class_spec, 0) + count


class BuildsStage(PagedStage):
    workflow_type = "builds"

    def __init__(self, ctx: ExecutionContext, params: StageParams) -> None:
        super().__init__(ctx, params)
        self.config = self.settings.builds
        self.child_options = ChildOptions(
            execution_timeout=self.config.child_timeout_seconds,
            retry_policy=RetryPolicy(
                initial_interval=self.settings.activities.initial_interval_seconds,
                backoff_coefficient=self.settings.activities.backoff_coefficient,
                max_interval=self.settings.activities.max_interval_seconds,
                max_attempts=self.config.child_max_attempts,
            ),
            task_queue=self.settings.batch_queue,
        )

    @property
    def default_page_size(self) -> int:
        return self.config.page_size

    @property
    def default_max_pages(self) -> int:
        return self.config.max_pages_per_execution

    def count_total(self) -> int:
        with get_session() as session:
            return count_reports_in_batch(session, self.batch_id)

    def load_page(self, offset: int, limit: int) -> Sequence[tuple[str, int]]:
        with get_session() as session:
            return get_report_keys_page(session, self.batch_id, offset, limit)

    def process_page(self, items: Sequence[tuple[str, int]]) -> PageOutcome:
        size = self.config.report_batch_size
        chunks = [list(items[i:i + size]) for i in range(0, len(items), size)]
        batches = [
            BuildsBatchParams(
                batch_id=self.batch_id,
                parent_state_id=self.state_id,
                report_keys=chunk,
            ).model_dump(mode="json")
            for chunk in chunks
        ]
        page_offset = self.cursor.offset
        child_ids = [f"{self.ctx.execution_id}-p{page_offset}-{i}" for i in range(len(chunks))]
        chunk_sizes = dict(zip(child_ids, map(len, chunks)))
        outcome = PageOutcome(last_id=f"{items[-1][0]}:{items[-1][1]}")

        def on_complete(child: ChildResult, progress: FanOutResult) -> None:
            if child.succeeded:
                merge_batch_result(outcome, child.value or {})
                self.metrics.increment("batches_succeeded")
            elif child.rate_limited:
                # The page is redone after the continuation
                self.metrics.increment("batches_rate_limited")
            else:
                outcome.failed += chunk_sizes[child.child_id]
                outcome.counters["failed_batches"] = outcome.counters.get("failed_batches", 0) + 1
                self.metrics.increment("batches_failed")
            logger.info(
                "builds_batch_progress",
                state_id=self.state_id,
                completed=len(progress.results),
                total=progress.total,
                child_id=child.child_id,
                succeeded=child.succeeded,
            )

        result = fan_out(
            self.ctx,
            BUILDS_BATCH_WORKFLOW,
            batches,
            max_concurrency=self.config.max_concurrency,
            child_id=lambda index: child_ids[index],
            options=self.child_options,
            on_complete=on_complete,
        )
        if result.rate_limited:
            outcome.rate_limit = RateLimitError(
                f"{len(result.failures)} build batch(es) hit the upstream rate limit"
            )
        return outcome


@workflow("builds")
def builds_workflow(ctx: ExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    return BuildsStage(ctx, StageParams.model_validate(params)).run()


@workflow(BUILDS_BATCH_WORKFLOW)
def builds_batch_workflow(ctx: ExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    batch = BuildsBatchParams.model_validate(params)
    store = ctx.resources.state_store
    state_id = f"{BUILDS_BATCH_WORKFLOW}-{ctx.execution_id}"
    state = store.start(
        state_id,
        BUILDS_BATCH_WORKFLOW,
        batch_id=batch.batch_id,
        parent_workflow_id=batch.parent_state_id,
        total_items=len(batch.report_keys),
        params=batch.model_dump(mode="json"),
    )
    recorded = recorded_outcome(ctx, state)
    if recorded is not None:
        return recorded
    if ctx.is_cancelled():
        store.fail(state_id, "cancelled")
        return {"status": "cancelled", "state_id": state_id}

    try:
        summary = ctx.execute_activity(
            extract_builds,
            batch.report_keys,
            batch.batch_id,
            options=ActivityOptions.from_config(ctx.resources.settings.activities, heartbeat=True),
        )
    except Exception as exc:
        store.fail(state_id, str(exc))
        raise

    handled = summary["reports_processed"] + summary["reports_skipped"] + summary["reports_failed"]
    store.complete(
        state_id,
        items_processed=handled,
        api_requests=0,
        result_summary=summary,
    )
    return {"status": "completed", "state_id": state_id, **summary}
