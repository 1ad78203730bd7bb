"""
Shared machinery for the build statistics aggregators.

An aggregator recomputes one statistics table for a (class, spec, encounter)
key from every stored build of that key:

1. delete the key's existing rows
2. page through the builds, folding each page on a small thread pool into a
   shared accumulator map guarded by a lock
3. turn accumulators into rows (averages and usage percentages per group)
4. upsert the rows

All of it runs inside one database session, so readers either see the old
table or the new one.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Hashable, Sequence

from ..db import get_session
from ..errors import PayloadError
from ..logging import logger
from ..models import StatisticsKey
from ..persistence.player_builds import count_builds, get_builds_page
from ..persistence.statistics import delete_statistics, upsert_statistics


@dataclass(frozen=True)
class BuildView:
    """Plain copy of the build columns the aggregators read."""

    id: int
    item_level: float
    keystone_level: int
    gear: Any
    stats: Any
    talents: Any
    talent_import: str | None

    @classmethod
    def from_row(cls, row: Any) -> BuildView:
        return cls(
            id=row.id,
            item_level=row.item_level or 0.0,
            keystone_level=row.keystone_level or 0,
            gear=row.gear,
            stats=row.stats,
            talents=row.talents,
            talent_import=row.talent_import,
        )


@dataclass(frozen=True)
class Entry:
    """One statistic sighting produced by a build."""

    identity: tuple[Hashable, ...]
    attributes: dict[str, Any]
    value: float | None = None


@dataclass
class Accumulator:
    attributes: dict[str, Any]
    # Build whose attributes are reported: the lowest build id seen
    representative_id: int
    usage_count: int = 0
    item_level_sum: float = 0.0
    item_level_min: float = float("inf")
    item_level_max: float = float("-inf")
    keystone_sum: int = 0
    keystone_min: int = 0
    keystone_max: int = 0
    value_sum: float = 0.0
    value_min: float = float("inf")
    value_max: float = float("-inf")

    def add(self, item_level: float, keystone_level: int, value: float | None) -> None:
        if self.usage_count == 0:
            self.keystone_min = keystone_level
            self.keystone_max = keystone_level
        self.usage_count += 1
        self.item_level_sum += item_level
        self.item_level_min = min(self.item_level_min, item_level)
        self.item_level_max = max(self.item_level_max, item_level)
        self.keystone_sum += keystone_level
        self.keystone_min = min(self.keystone_min, keystone_level)
        self.keystone_max = max(self.keystone_max, keystone_level)
        if value is not None:
            self.value_sum += value
            self.value_min = min(self.value_min, value)
            self.value_max = max(self.value_max, value)


@dataclass
class AggregationResult:
    key: StatisticsKey
    statistic: str
    builds_total: int = 0
    builds_invalid: int = 0
    rows_deleted: int = 0
    rows_written: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "statistic": self.statistic,
            "key": self.key.label,
            "builds_total": self.builds_total,
            "builds_invalid": self.builds_invalid,
            "rows_deleted": self.rows_deleted,
            "rows_written": self.rows_written,
        }


class StatisticsAggregator(ABC):
    """Delete-and-recompute aggregation of one statistics table."""

    name: ClassVar[str]
    model: ClassVar[Any]
    identity_columns: ClassVar[tuple[str, ...]]
    tracks_value: ClassVar[bool] = False

    def __init__(self, page_size: int = 100, num_workers: int = 4) -> None:
        if page_size <= 0 or num_workers <= 0:
            raise ValueError("page_size and num_workers must be positive")
        self.page_size = page_size
        self.num_workers = num_workers

    @abstractmethod
    def extract(self, build: BuildView) -> list[Entry]:
        """Decode a build's payload into statistic entries.

        Raises:
            PayloadError: When the payload cannot be decoded
        """

    @abstractmethod
    def group_of(self, identity: tuple[Hashable, ...]) -> Hashable:
        """Grouping used as the denominator of usage percentages."""

    def run(
        self,
        key: StatisticsKey,
        heartbeat: Callable[[dict[str, Any]], None] | None = None,
    ) -> AggregationResult:
        """Recompute the table for ``key``.

        ``heartbeat`` is called once per page and before the final upsert; an
        exception it raises rolls the whole recomputation back.
        """
        beat = heartbeat or (lambda details: None)
        result = AggregationResult(key=key, statistic=self.name)
        with get_session() as session:
            result.rows_deleted = delete_statistics(session, self.model, key)
            result.builds_total = count_builds(session, key)
            if result.builds_total == 0:
                logger.info("statistics_no_builds", statistic=self.name, key=key.label)
                return result

            accumulators: dict[tuple[Hashable, ...], Accumulator] = {}
            lock = threading.Lock()
            with ThreadPoolExecutor(
                max_workers=self.num_workers,
                thread_name_prefix=f"stats-{self.name}",
            ) as pool:
                for offset in range(0, result.builds_total, self.page_size):
                    page = [
                        BuildView.from_row(row)
                        for row in get_builds_page(session, key, offset, self.page_size)
                    ]
                    if not page:
                        break
                    beat({"statistic": self.name, "key": key.label, "offset": offset})
                    partitions = [page[i::self.num_workers] for i in range(self.num_workers)]
                    futures = [
                        pool.submit(self._fold, partition, accumulators, lock)
                        for partition in partitions
                        if partition
                    ]
                    for future in futures:
                        result.builds_invalid += future.result()

            beat({"statistic": self.name, "key": key.label, "stage": "upsert"})
            rows = self.finalize(key, accumulators)
            result.rows_written = upsert_statistics(
                session, self.model, rows, self.identity_columns
            )

        logger.info("statistics_aggregated", **result.as_dict())
        return result

    def _fold(
        self,
        builds: Sequence[BuildView],
        accumulators: dict[tuple[Hashable, ...], Accumulator],
        lock: threading.Lock,
    ) -> int:
        invalid = 0
        for build in builds:
            try:
                entries = self.extract(build)
            except PayloadError as exc:
                invalid += 1
                logger.debug(
                    "statistics_invalid_build",
                    statistic=self.name,
                    build_id=build.id,
                    error=str(exc),
                )
                continue
            with lock:
                for entry in entries:
                    acc = accumulators.get(entry.identity)
                    if acc is None:
                        acc = accumulators[entry.identity] = Accumulator(
                            attributes=entry.attributes, representative_id=build.id
                        )
                    elif build.id < acc.representative_id:
                        acc.attributes = entry.attributes
                        acc.representative_id = build.id
                    acc.add(build.item_level, build.keystone_level, entry.value)
        return invalid

    def finalize(
        self,
        key: StatisticsKey,
        accumulators: dict[tuple[Hashable, ...], Accumulator],
    ) -> list[dict[str, Any]]:
        group_totals: dict[Hashable, int] = {}
        for identity, acc in accumulators.items():
            group = self.group_of(identity)
            group_totals[group] = group_totals.get(group, 0) + acc.usage_count

        rows: list[dict[str, Any]] = []
        for identity, acc in accumulators.items():
            count = acc.usage_count
            row = {
                "class_name": key.class_name,
                "spec_name": key.spec_name,
                "encounter_id": key.encounter_id,
                **acc.attributes,
                "usage_count": count,
                "usage_percentage": count / group_totals[self.group_of(identity)] * 100.0,
                "avg_item_level": acc.item_level_sum / count,
                "min_item_level": acc.item_level_min,
                "max_item_level": acc.item_level_max,
                "avg_keystone_level": acc.keystone_sum / count,
                "min_keystone_level": acc.keystone_min,
                "max_keystone_level": acc.keystone_max,
            }
            if self.tracks_value:
                row["avg_value"] = acc.value_sum / count
                row["min_value"] = acc.value_min
                row["max_value"] = acc.value_max
            rows.append(row)
        return rows
