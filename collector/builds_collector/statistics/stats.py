"""Secondary and minor stat distribution."""

from __future__ import annotations

from typing import Hashable

from ..db import db_models
from ..models import decode_stats
from .base import BuildView, Entry, StatisticsAggregator


class StatStatisticsAggregator(StatisticsAggregator):
    name = "stats"
    model = db_models.StatStatistic
    identity_columns = ("stat_name", "stat_category")
    tracks_value = True

    def extract(self, build: BuildView) -> list[Entry]:
        payload = decode_stats(build.stats)
        entries = []
        for stat_name, stat_range in payload.data.items():
            category = payload.category_of(stat_name)
            # Primary stats and stamina are not tracked.
            if category is None:
                continue
            entries.append(
                Entry(
                    identity=(stat_name, category),
                    attributes={"stat_name": stat_name, "stat_category": category},
                    value=stat_range.value,
                )
            )
        return entries

    def group_of(self, identity: tuple[Hashable, ...]) -> Hashable:
        return identity[1]
