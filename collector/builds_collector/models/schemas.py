"""Pydantic models exchanged between the upstream client, activities and stages."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PlayerRole = Literal["dps", "healer", "tank"]


class SpecRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    class_name: str
    spec_name: str

    @property
    def key(self) -> str:
        return f"{self.class_name}-{self.spec_name}"


class DungeonRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    encounter_id: int
    name: str
    slug: str | None = None


class StatisticsKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    class_name: str
    spec_name: str
    encounter_id: int

    @property
    def label(self) -> str:
        return f"{self.class_name}-{self.spec_name}-{self.encounter_id}"


class RankingEntry(BaseModel):
    player_name: str
    class_name: str
    spec_name: str
    encounter_id: int
    report_code: str
    report_fight_id: int
    report_start_time: int | None = None
    server_id: int | None = None
    server_name: str | None = None
    server_region: str | None = None
    guild_id: int | None = None
    guild_name: str | None = None
    faction: int | None = None
    amount: float = 0.0
    score: float = 0.0
    hard_mode_level: int = 0
    duration: int = 0
    start_time: int | None = None
    medal: str | None = None
    affixes: list[int] = Field(default_factory=list)

    @property
    def identity(self) -> tuple[str, int, str]:
        return (self.report_code, self.report_fight_id, self.player_name)


class PlayerDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int | None = None
    name: str | None = None
    type: str | None = None
    specs: list[Any] = Field(default_factory=list)
    max_item_level: float = Field(0.0, alias="maxItemLevel")
    combatant_info: dict[str, Any] = Field(default_factory=dict, alias="combatantInfo")

    @property
    def spec_name(self) -> str | None:
        if not self.specs:
            return None
        first = self.specs[0]
        if isinstance(first, dict):
            return first.get("spec")
        return str(first)


class ReportDetail(BaseModel):
    code: str
    fight_id: int
    encounter_id: int
    total_time: int = 0
    item_level: float = 0.0
    keystone_level: int = 0
    keystone_time: int = 0
    affixes: list[int] = Field(default_factory=list)
    player_details_dps: list[dict[str, Any]] = Field(default_factory=list)
    player_details_healers: list[dict[str, Any]] = Field(default_factory=list)
    player_details_tanks: list[dict[str, Any]] = Field(default_factory=list)

    def players(self) -> list[tuple[PlayerRole, dict[str, Any]]]:
        return [
            *(("dps", p) for p in self.player_details_dps),
            *(("healer", p) for p in self.player_details_healers),
            *(("tank", p) for p in self.player_details_tanks),
        ]


class RateLimitSnapshot(BaseModel):
    limit_per_hour: float = 0.0
    points_spent_this_hour: float = 0.0
    points_reset_in: float = 0.0

    @property
    def remaining_points(self) -> float:
        return max(self.limit_per_hour - self.points_spent_this_hour, 0.0)


class ItemOutcome(BaseModel):
    """Result of handling one work item inside a stage activity."""

    status: Literal["processed", "skipped", "failed"]
    api_requests: int = 0
    counters: dict[str, int] = Field(default_factory=dict)
    error: str | None = None
