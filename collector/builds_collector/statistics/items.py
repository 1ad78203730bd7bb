"""Item usage per equipment slot."""

from __future__ import annotations

from typing import Hashable

from ..db import db_models
from ..models import decode_gear
from .base import BuildView, Entry, StatisticsAggregator


class ItemStatisticsAggregator(StatisticsAggregator):
    name = "items"
    model = db_models.ItemStatistic
    identity_columns = ("item_slot", "item_id")

    def extract(self, build: BuildView) -> list[Entry]:
        entries = []
        for item in decode_gear(build.gear).data:
            if item.is_empty:
                continue
            entries.append(
                Entry(
                    identity=(item.slot, item.id),
                    attributes={
                        "item_slot": item.slot,
                        "item_id": item.id,
                        "item_name": item.name,
                        "item_icon": item.icon,
                        "item_quality": item.quality,
                        "set_id": item.set_id,
                        "bonus_ids": item.bonus_ids,
                        "gems": [gem.model_dump() for gem in item.gems],
                        "permanent_enchant_id": item.permanent_enchant,
                        "permanent_enchant_name": item.permanent_enchant_name,
                        "temporary_enchant_id": item.temporary_enchant,
                        "temporary_enchant_name": item.temporary_enchant_name,
                    },
                )
            )
        return entries

    def group_of(self, identity: tuple[Hashable, ...]) -> Hashable:
        return identity[0]
