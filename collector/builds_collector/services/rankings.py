"""Rankings activity: refresh the leaderboard of one spec/dungeon combination."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..config import RankingsStageConfig
from ..db import get_session
from ..logging import logger
from ..models import DungeonRef, ItemOutcome, SpecRef
from ..persistence.rankings import get_last_refresh, mark_rankings_for_reports, store_rankings
from ..utils.datetime_utils import days_ago, ensure_utc

if TYPE_CHECKING:
    from ..orchestration.activities import ActivityContext


def fetch_rankings(
    actx: ActivityContext,
    batch_id: str,
    spec: SpecRef,
    dungeon: DungeonRef,
    config: RankingsStageConfig,
) -> ItemOutcome:
    """Fetch and store the top rankings of one combination.

    Combinations refreshed within ``update_interval_days`` are skipped without
    an API call; their unfinished rankings still join ``batch_id`` so the
    reports stage retries them.
    """
    with get_session() as session:
        last_refresh = get_last_refresh(
            session, dungeon.encounter_id, spec.class_name, spec.spec_name
        )
        if last_refresh is not None and ensure_utc(last_refresh) > days_ago(config.update_interval_days):
            marked = mark_rankings_for_reports(
                session, dungeon.encounter_id, spec.class_name, spec.spec_name, batch_id
            )
            logger.info(
                "rankings_refresh_skipped",
                spec=spec.key,
                encounter_id=dungeon.encounter_id,
                last_refresh=str(last_refresh),
                rankings_marked=marked,
            )
            return ItemOutcome(status="skipped", counters={"rankings_marked": marked})

    client = actx.resources.client()
    fetched = client.fetch_rankings(
        spec.class_name,
        spec.spec_name,
        dungeon.encounter_id,
        limit=config.max_rankings_per_spec,
        max_pages=config.upstream_page_limit,
    )
    actx.heartbeat({"spec": spec.key, "encounter_id": dungeon.encounter_id, "fetched": len(fetched.entries)})

    with get_session() as session:
        result = store_rankings(
            session, dungeon.encounter_id, spec.class_name, spec.spec_name, fetched.entries
        )
        marked = mark_rankings_for_reports(
            session, dungeon.encounter_id, spec.class_name, spec.spec_name, batch_id
        )

    return ItemOutcome(
        status="processed",
        api_requests=fetched.queries,
        counters={"rankings_stored": result.stored, "rankings_marked": marked},
    )
