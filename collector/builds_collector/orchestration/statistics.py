"""``statistics`` workflow: recompute every statistics table of one key."""

from __future__ import annotations

from typing import Any

from ..logging import logger
from ..models import StatisticsKey
from ..services.statistics import aggregate_statistics
from ..statistics import AGGREGATORS
from ..utils.redis_lock import acquire_redis_lock, release_redis_lock, statistics_lock_name
from .activities import ActivityOptions
from .registry import workflow
from .stages.base import recorded_outcome
from .substrate import ExecutionContext

STATISTICS_WORKFLOW = "statistics"


@workflow(STATISTICS_WORKFLOW)
def statistics_workflow(ctx: ExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Run the item, talent and stat aggregators for one key.

    Only one aggregation per key runs at a time; a key whose lock is held is
    skipped and reported as such.
    """
    key = StatisticsKey.model_validate(params)
    settings = ctx.resources.settings
    lock_name = statistics_lock_name(key.class_name, key.spec_name, key.encounter_id)
    lock_token = acquire_redis_lock(lock_name, timeout=settings.statistics.lock_timeout_seconds)
    if lock_token is None:
        logger.info("statistics_key_locked", key=key.label)
        return {"status": "skipped", "key": key.label, "reason": "locked"}

    store = ctx.resources.state_store
    state_id = f"{STATISTICS_WORKFLOW}-{ctx.execution_id}"
    options = ActivityOptions.from_config(settings.activities, heartbeat=True)
    results: dict[str, Any] = {}
    try:
        state = store.start(
            state_id,
            STATISTICS_WORKFLOW,
            batch_id=params.get("batch_id"),
            total_items=len(AGGREGATORS),
            params=params,
        )
        recorded = recorded_outcome(ctx, state)
        if recorded is not None:
            return recorded
        try:
            for index, statistic in enumerate(AGGREGATORS, start=1):
                results[statistic] = ctx.execute_activity(
                    aggregate_statistics, statistic, key, options=options
                )
                store.checkpoint(state_id, items_processed=index, api_requests=0, last_processed_id=statistic)
        except Exception as exc:
            store.fail(state_id, str(exc))
            raise
        store.complete(
            state_id,
            items_processed=len(AGGREGATORS),
            api_requests=0,
            result_summary={"key": key.label, "results": results},
        )
    finally:
        release_redis_lock(lock_name, lock_token)

    return {"status": "completed", "key": key.label, "state_id": state_id, "results": results}
