"""Rankings stage: refresh leaderboards for every spec x dungeon combination."""

from __future__ import annotations

from typing import Any, Sequence

from ...config_pipeline import get_enabled_dungeons, get_enabled_specs
from ...models import DungeonRef, SpecRef
from ...services.rankings import fetch_rankings
from ..cursor import StageParams
from ..registry import workflow
from ..substrate import ExecutionContext
from .base import PagedStage, PageOutcome


def default_specs() -> list[SpecRef]:
    return [SpecRef(class_name=s.class_name, spec_name=s.spec_name) for s in get_enabled_specs()]


def default_dungeons() -> list[DungeonRef]:
    return [
        DungeonRef(encounter_id=d.encounter_id, name=d.name, slug=d.slug)
        for d in get_enabled_dungeons()
    ]


class RankingsStage(PagedStage):
    workflow_type = "rankings"
    polls_rate_limit = True

    def __init__(self, ctx: ExecutionContext, params: StageParams) -> None:
        super().__init__(ctx, params)
        self.config = self.settings.rankings
        specs = params.specs if params.specs is not None else default_specs()
        dungeons = params.dungeons if params.dungeons is not None else default_dungeons()
        # Work items in configured order: every dungeon of a spec, spec by spec
        self.combinations: list[tuple[SpecRef, DungeonRef]] = [
            (spec, dungeon) for spec in specs for dungeon in dungeons
        ]

    @property
    def default_page_size(self) -> int:
        return self.config.page_size

    @property
    def default_max_pages(self) -> int:
        return self.config.max_pages_per_execution

    def count_total(self) -> int:
        return len(self.combinations)

    def load_page(self, offset: int, limit: int) -> Sequence[tuple[SpecRef, DungeonRef]]:
        return self.combinations[offset:offset + limit]

    def process_page(self, items: Sequence[tuple[SpecRef, DungeonRef]]) -> PageOutcome:
        return self.process_items(
            items,
            lambda combo: self.ctx.execute_activity(
                fetch_rankings,
                self.batch_id,
                combo[0],
                combo[1],
                self.config,
                options=self.activity_options,
            ),
            item_id=lambda combo: f"{combo[0].key}:{combo[1].encounter_id}",
        )


@workflow("rankings")
def rankings_workflow(ctx: ExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    return RankingsStage(ctx, StageParams.model_validate(params)).run()
