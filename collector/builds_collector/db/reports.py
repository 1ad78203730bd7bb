"""Fight reports and the per-player builds extracted from them."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType
from ..utils.datetime_utils import now_utc


class BuildExtractionStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Report(Base):
    """Detail of one keystone fight, keyed by report code and fight id."""

    __tablename__ = "reports"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    fight_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    encounter_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    total_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    item_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    keystone_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    keystone_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    affixes: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)

    player_details_dps: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    player_details_healers: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    player_details_tanks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    talent_codes: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict, nullable=False)

    build_status: Mapped[str] = mapped_column(
        String(20), default=BuildExtractionStatus.PENDING, nullable=False, index=True
    )
    build_batch_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    build_extracted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    build_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), onupdate=now_utc, nullable=False
    )


class PlayerBuild(Base):
    """Equipped build of one player in one fight. Rows are never updated."""

    __tablename__ = "player_builds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_code: Mapped[str] = mapped_column(String(64), nullable=False)
    fight_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)

    player_name: Mapped[str] = mapped_column(String(100), nullable=False)
    class_name: Mapped[str] = mapped_column(String(50), nullable=False)
    spec_name: Mapped[str] = mapped_column(String(50), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    encounter_id: Mapped[int] = mapped_column(Integer, nullable=False)

    item_level: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    keystone_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    affixes: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)

    gear: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    stats: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    talents: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    talent_import: Mapped[str | None] = mapped_column(Text, nullable=True)

    extraction_batch_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("report_code", "fight_id", "actor_id", name="uq_player_builds_actor"),
        Index("idx_player_builds_key", "class_name", "spec_name", "encounter_id"),
    )
