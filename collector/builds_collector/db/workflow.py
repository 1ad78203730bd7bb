"""Workflow checkpoint records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType
from ..utils.datetime_utils import now_utc


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    CONTINUING = "continuing"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.CONTINUING, WorkflowStatus.FAILED, WorkflowStatus.COMPLETED}
)


class WorkflowState(Base):
    """Checkpoint of one workflow execution.

    Each continue-as-new produces a fresh record that points back to the
    previous one through ``parent_workflow_id`` and shares its ``batch_id``.
    """

    __tablename__ = "workflow_states"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    workflow_type: Mapped[str] = mapped_column(String(50), nullable=False)
    parent_workflow_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    batch_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=WorkflowStatus.RUNNING.value, nullable=False, index=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    items_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_items_to_process: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_percentage: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    continuation_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_processed_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    api_requests_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    performance_metrics: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )
    result_summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # Stage input without its cursor, used to resume the stage later
    input_params: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=now_utc, server_default=func.now(), onupdate=now_utc,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_workflow_states_type_created", "workflow_type", "created_at"),
        Index("idx_workflow_states_batch_continuation", "batch_id", "continuation_count"),
    )
