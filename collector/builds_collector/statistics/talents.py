"""Talent loadout usage."""

from __future__ import annotations

from typing import Hashable

from ..db import db_models
from ..models import decode_talents
from .base import BuildView, Entry, StatisticsAggregator


class TalentStatisticsAggregator(StatisticsAggregator):
    name = "talents"
    model = db_models.TalentStatistic
    identity_columns = ("talent_import",)

    def extract(self, build: BuildView) -> list[Entry]:
        import_code = build.talent_import
        if not import_code:
            import_code = decode_talents(build.talents).import_code
        if not import_code:
            return []
        return [Entry(identity=(import_code,), attributes={"talent_import": import_code})]

    def group_of(self, identity: tuple[Hashable, ...]) -> Hashable:
        return None
