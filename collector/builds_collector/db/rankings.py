"""Mythic+ ranking rows collected per class/spec/dungeon."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType
from ..utils.datetime_utils import now_utc


class RankingReportStatus:
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class ClassRanking(Base):
    """One leaderboard entry pointing at the fight that produced it."""

    __tablename__ = "class_rankings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    player_name: Mapped[str] = mapped_column(String(100), nullable=False)
    class_name: Mapped[str] = mapped_column(String(50), nullable=False)
    spec_name: Mapped[str] = mapped_column(String(50), nullable=False)
    encounter_id: Mapped[int] = mapped_column(Integer, nullable=False)

    report_code: Mapped[str] = mapped_column(String(64), nullable=False)
    report_fight_id: Mapped[int] = mapped_column(Integer, nullable=False)
    report_start_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    server_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    server_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    server_region: Mapped[str | None] = mapped_column(String(10), nullable=True)
    guild_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    guild_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    faction: Mapped[int | None] = mapped_column(Integer, nullable=True)

    amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    hard_mode_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    medal: Mapped[str | None] = mapped_column(String(20), nullable=True)
    affixes: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)

    report_status: Mapped[str] = mapped_column(
        String(20), default=RankingReportStatus.PENDING, nullable=False, index=True
    )
    report_batch_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    report_processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    raw: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), onupdate=now_utc, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "encounter_id",
            "class_name",
            "spec_name",
            "report_code",
            "report_fight_id",
            "player_name",
            name="uq_class_rankings_entry",
        ),
        Index("idx_class_rankings_combo", "encounter_id", "class_name", "spec_name"),
        Index("idx_class_rankings_report", "report_code", "report_fight_id"),
    )
