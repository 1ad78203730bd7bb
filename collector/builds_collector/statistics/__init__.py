"""Build statistics aggregators."""

from .base import AggregationResult, StatisticsAggregator
from .items import ItemStatisticsAggregator
from .stats import StatStatisticsAggregator
from .talents import TalentStatisticsAggregator

AGGREGATORS: dict[str, type[StatisticsAggregator]] = {
    "items": ItemStatisticsAggregator,
    "talents": TalentStatisticsAggregator,
    "stats": StatStatisticsAggregator,
}

__all__ = [
    "AGGREGATORS",
    "AggregationResult",
    "StatisticsAggregator",
    "ItemStatisticsAggregator",
    "TalentStatisticsAggregator",
    "StatStatisticsAggregator",
]
