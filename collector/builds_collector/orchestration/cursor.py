"""Serializable state carried from one stage execution to its continuation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from ..models import DungeonRef, SpecRef


class ResumableCursor(BaseModel):
    offset: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    api_requests: int = 0
    continuation_count: int = 0
    parent_state_id: str | None = None
    total_items: int = 0
    counters: dict[str, Any] = Field(default_factory=dict)

    @property
    def items_handled(self) -> int:
        return self.processed + self.failed + self.skipped

    def add_counters(self, counters: dict[str, Any]) -> None:
        """Merge counters; numbers add up, dicts of numbers merge key-wise."""
        for name, value in counters.items():
            if isinstance(value, dict):
                merged = dict(self.counters.get(name) or {})
                for key, amount in value.items():
                    merged[key] = merged.get(key, 0) + amount
                self.counters[name] = merged
            else:
                self.counters[name] = self.counters.get(name, 0) + value

    def summary(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "items_processed": self.items_handled,
            "api_requests": self.api_requests,
            "continuations": self.continuation_count,
            **self.counters,
        }


class StageParams(BaseModel):
    """Input of a stage execution, also used verbatim for its continuations."""

    batch_id: str
    cursor: ResumableCursor = Field(default_factory=ResumableCursor)
    specs: list[SpecRef] | None = None
    dungeons: list[DungeonRef] | None = None
    page_size: int | None = Field(default=None, gt=0)
    max_pages_per_execution: int | None = Field(default=None, gt=0)


class BuildsBatchParams(BaseModel):
    batch_id: str
    parent_state_id: str | None = None
    report_keys: list[tuple[str, int]]
