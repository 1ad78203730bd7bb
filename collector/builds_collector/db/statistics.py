"""Aggregated usage statistics per class/spec/encounter."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType
from ..utils.datetime_utils import now_utc


class _StatisticColumns:
    """Columns shared by the item, talent and stat variants."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    class_name: Mapped[str] = mapped_column(String(50), nullable=False)
    spec_name: Mapped[str] = mapped_column(String(50), nullable=False)
    encounter_id: Mapped[int] = mapped_column(Integer, nullable=False)

    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_percentage: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_item_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    min_item_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    max_item_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_keystone_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    min_keystone_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_keystone_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), onupdate=now_utc, nullable=False
    )


class ItemStatistic(_StatisticColumns, Base):
    __tablename__ = "item_statistics"

    item_slot: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    item_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    item_icon: Mapped[str | None] = mapped_column(String(255), nullable=True)
    item_quality: Mapped[int | None] = mapped_column(Integer, nullable=True)
    set_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bonus_ids: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)
    gems: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)
    permanent_enchant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    permanent_enchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    temporary_enchant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    temporary_enchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "class_name", "spec_name", "encounter_id", "item_slot", "item_id",
            name="uq_item_statistics_identity",
        ),
        Index("idx_item_statistics_key", "class_name", "spec_name", "encounter_id"),
    )


class TalentStatistic(_StatisticColumns, Base):
    __tablename__ = "talent_statistics"

    talent_import: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "class_name", "spec_name", "encounter_id", "talent_import",
            name="uq_talent_statistics_identity",
        ),
        Index("idx_talent_statistics_key", "class_name", "spec_name", "encounter_id"),
    )


class StatStatistic(_StatisticColumns, Base):
    __tablename__ = "stat_statistics"

    stat_name: Mapped[str] = mapped_column(String(50), nullable=False)
    stat_category: Mapped[str] = mapped_column(String(20), nullable=False)
    avg_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    min_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    max_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "class_name", "spec_name", "encounter_id", "stat_name", "stat_category",
            name="uq_stat_statistics_identity",
        ),
        Index("idx_stat_statistics_key", "class_name", "spec_name", "encounter_id"),
    )
