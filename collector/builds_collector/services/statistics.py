"""Statistics activity: recompute one statistics table for one key."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..models import StatisticsKey
from ..statistics import AGGREGATORS

if TYPE_CHECKING:
    from ..orchestration.activities import ActivityContext


def aggregate_statistics(actx: ActivityContext, statistic: str, key: StatisticsKey) -> dict[str, Any]:
    config = actx.resources.settings.statistics
    aggregator = AGGREGATORS[statistic](page_size=config.page_size, num_workers=config.num_workers)
    result = aggregator.run(key, heartbeat=actx.heartbeat)
    return result.as_dict()
