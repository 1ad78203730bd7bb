"""
``pipeline`` workflow: the end-to-end collection run.

Reserves the rate budget, runs the rankings, reports and builds stages as
child executions one after the other (each followed across its
continuations), optionally recomputes statistics for every key touched by
the batch and always releases the budget.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from ..db import get_session
from ..errors import ChildExecutionError, ConfigurationError, ErrorType, PipelineError
from ..logging import logger
from ..models import DungeonRef, SpecRef
from ..persistence.player_builds import get_statistics_keys
from .cursor import StageParams
from .fanout import fan_out
from .registry import workflow
from .stages.base import recorded_outcome
from .stages.rankings import default_dungeons, default_specs
from .statistics import STATISTICS_WORKFLOW
from .substrate import ChildOptions, ExecutionContext

PIPELINE_WORKFLOW = "pipeline"
STAGE_ORDER = ("rankings", "reports", "builds")


class PipelineParams(BaseModel):
    specs: list[SpecRef] | None = None
    dungeons: list[DungeonRef] | None = None
    batch_id: str | None = None
    run_statistics: bool = True


class PipelineCoordinator:
    def __init__(self, ctx: ExecutionContext, params: PipelineParams) -> None:
        self.ctx = ctx
        self.params = params
        self.settings = ctx.resources.settings
        self.store = ctx.resources.state_store
        self.budget = ctx.resources.budget
        self.state_id = f"{PIPELINE_WORKFLOW}-{ctx.execution_id}"
        self.batch_id = params.batch_id or f"batch-{ctx.execution_id}"
        self.specs = params.specs if params.specs is not None else default_specs()
        self.dungeons = params.dungeons if params.dungeons is not None else default_dungeons()

    def validate(self) -> None:
        """Raise ConfigurationError when the run cannot make sense."""
        if not self.specs:
            raise ConfigurationError("No class specs configured")
        if not self.dungeons:
            raise ConfigurationError("No dungeons configured")
        sizes = {
            "rankings.page_size": self.settings.rankings.page_size,
            "reports.page_size": self.settings.reports.page_size,
            "builds.page_size": self.settings.builds.page_size,
            "builds.report_batch_size": self.settings.builds.report_batch_size,
            "builds.max_concurrency": self.settings.builds.max_concurrency,
            "statistics.page_size": self.settings.statistics.page_size,
            "statistics.num_workers": self.settings.statistics.num_workers,
        }
        invalid = [name for name, value in sizes.items() if value <= 0]
        if invalid:
            raise ConfigurationError(f"Settings must be positive: {', '.join(invalid)}")

    def run(self) -> dict[str, Any]:
        ctx = self.ctx
        state = self.store.start(
            self.state_id,
            PIPELINE_WORKFLOW,
            batch_id=self.batch_id,
            total_items=len(STAGE_ORDER),
            params=self.params.model_dump(mode="json"),
        )
        recorded = recorded_outcome(ctx, state)
        if recorded is not None:
            return recorded
        try:
            self.validate()
            reserved = self.budget.reserve_points(ctx.execution_id, len(self.specs), len(self.dungeons))
        except PipelineError as exc:
            logger.error("pipeline_rejected", state_id=self.state_id, error=str(exc), error_type=exc.error_type.value)
            self.store.fail(self.state_id, str(exc))
            raise

        logger.info(
            "pipeline_started",
            state_id=self.state_id,
            batch_id=self.batch_id,
            specs=len(self.specs),
            dungeons=len(self.dungeons),
            reserved_points=reserved,
        )
        stages: dict[str, Any] = {}
        try:
            for index, stage in enumerate(STAGE_ORDER, start=1):
                if ctx.is_cancelled():
                    return self._cancelled(stages)
                result = self._run_stage(stage)
                stages[stage] = result
                if result.get("status") == "cancelled":
                    return self._cancelled(stages)
                self.store.checkpoint(
                    self.state_id,
                    items_processed=index,
                    api_requests=self._api_requests(stages),
                    last_processed_id=stage,
                )
            statistics = self._run_statistics() if self.params.run_statistics else None
        except Exception as exc:
            logger.exception("pipeline_failed", state_id=self.state_id, error=str(exc))
            self.store.fail(self.state_id, str(exc))
            raise
        finally:
            self.budget.release_points(ctx.execution_id)

        summary = self._summary(stages, statistics, reserved)
        self.store.complete(
            self.state_id,
            items_processed=len(STAGE_ORDER),
            api_requests=summary["api_requests"],
            result_summary=summary,
        )
        logger.info("pipeline_completed", state_id=self.state_id, batch_id=self.batch_id)
        return {"status": "completed", "state_id": self.state_id, **summary}

    def _run_stage(self, stage: str) -> dict[str, Any]:
        params = StageParams(batch_id=self.batch_id, specs=self.specs, dungeons=self.dungeons)
        handle = self.ctx.start_child(
            stage,
            params.model_dump(mode="json"),
            child_id=f"{self.ctx.execution_id}-{stage}",
            options=ChildOptions(task_queue=self.settings.children_queue),
        )
        outcome = self.ctx.wait(handle)
        if not outcome.succeeded:
            raise ChildExecutionError(
                f"{stage} stage failed: {outcome.error}",
                child_id=outcome.child_id,
                error_type=outcome.error_type or ErrorType.UNKNOWN,
            )
        logger.info("pipeline_stage_completed", state_id=self.state_id, stage=stage)
        return outcome.value or {}

    def _run_statistics(self) -> dict[str, Any]:
        with get_session() as session:
            keys = get_statistics_keys(session, self.batch_id)
        if not keys:
            return {"keys": 0, "completed": 0, "skipped": 0, "failed": 0}
        batches = [{**key.model_dump(), "batch_id": self.batch_id} for key in keys]
        result = fan_out(
            self.ctx,
            STATISTICS_WORKFLOW,
            batches,
            max_concurrency=self.settings.statistics.max_concurrency,
            child_id=lambda index: f"{self.ctx.execution_id}-stats-{index}",
            options=ChildOptions(task_queue=self.settings.batch_queue),
        )
        skipped = sum(1 for r in result.succeeded if (r.value or {}).get("status") == "skipped")
        return {
            "keys": len(keys),
            "completed": len(result.succeeded) - skipped,
            "skipped": skipped,
            "failed": len(result.failures),
        }

    def _cancelled(self, stages: dict[str, Any]) -> dict[str, Any]:
        logger.warning("pipeline_cancelled", state_id=self.state_id, stages_done=list(stages))
        self.store.fail(self.state_id, "cancelled")
        return {"status": "cancelled", "state_id": self.state_id, "batch_id": self.batch_id, "stages": stages}

    @staticmethod
    def _api_requests(stages: dict[str, Any]) -> int:
        return sum(int(result.get("api_requests", 0)) for result in stages.values())

    def _summary(
        self,
        stages: dict[str, Any],
        statistics: dict[str, Any] | None,
        reserved: float,
    ) -> dict[str, Any]:
        builds = stages.get("builds", {})
        return {
            "batch_id": self.batch_id,
            "reserved_points": reserved,
            "api_requests": self._api_requests(stages),
            "rankings_stored": stages.get("rankings", {}).get("rankings_stored", 0),
            "reports_stored": stages.get("reports", {}).get("reports_stored", 0),
            "builds_processed": builds.get("builds_processed", 0),
            "builds_by_class_spec": builds.get("builds_by_class_spec", {}),
            "stages": stages,
            "statistics": statistics,
        }


@workflow(PIPELINE_WORKFLOW)
def pipeline_workflow(ctx: ExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    return PipelineCoordinator(ctx, PipelineParams.model_validate(params)).run()
