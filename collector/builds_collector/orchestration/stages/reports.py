"""Reports stage: fetch report details for every ranking marked in the batch."""

from __future__ import annotations

from typing import Any, Sequence

from ...db import get_session
from ...persistence.rankings import count_rankings_in_batch, get_rankings_page
from ...services.reports import process_ranking_report
from ..cursor import StageParams
from ..registry import workflow
from ..substrate import ExecutionContext
from .base import PagedStage, PageOutcome


class ReportsStage(PagedStage):
    workflow_type = "reports"
    polls_rate_limit = True

    def __init__(self, ctx: ExecutionContext, params: StageParams) -> None:
        super().__init__(ctx, params)
        self.config = self.settings.reports

    @property
    def default_page_size(self) -> int:
        return self.config.page_size

    @property
    def default_max_pages(self) -> int:
        return self.config.max_pages_per_execution

    def count_total(self) -> int:
        with get_session() as session:
            return count_rankings_in_batch(session, self.batch_id)

    def load_page(self, offset: int, limit: int) -> Sequence[int]:
        with get_session() as session:
            return get_rankings_page(session, self.batch_id, offset, limit)

    def process_page(self, items: Sequence[int]) -> PageOutcome:
        return self.process_items(
            items,
            lambda ranking_id: self.ctx.execute_activity(
                process_ranking_report,
                ranking_id,
                self.batch_id,
                options=self.activity_options,
            ),
        )


@workflow("reports")
def reports_workflow(ctx: ExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    return ReportsStage(ctx, StageParams.model_validate(params)).run()
