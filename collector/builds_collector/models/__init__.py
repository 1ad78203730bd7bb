"""Typed models shared by the upstream client, activities and aggregators."""

from .payloads import (
    GearPayload,
    StatsPayload,
    TalentsPayload,
    decode_gear,
    decode_payload,
    decode_stats,
    decode_talents,
    envelope,
)
from .schemas import (
    DungeonRef,
    ItemOutcome,
    PlayerDetail,
    RankingEntry,
    RateLimitSnapshot,
    ReportDetail,
    SpecRef,
    StatisticsKey,
)

__all__ = [
    "DungeonRef",
    "ItemOutcome",
    "SpecRef",
    "StatisticsKey",
    "RankingEntry",
    "ReportDetail",
    "PlayerDetail",
    "RateLimitSnapshot",
    "GearPayload",
    "StatsPayload",
    "TalentsPayload",
    "envelope",
    "decode_payload",
    "decode_gear",
    "decode_stats",
    "decode_talents",
]
