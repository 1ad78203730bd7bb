"""Admission control for the shared Warcraft Logs point budget."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import BudgetExceededError
from ..logging import logger
from ..wcl.client import raise_if_exhausted

if TYPE_CHECKING:
    from ..orchestration.activities import ActivityContext


@dataclass
class BudgetSnapshot:
    total_points: float
    reserved_points: float
    reservations: dict[str, float]

    @property
    def remaining_points(self) -> float:
        return self.total_points - self.reserved_points


class RateBudgetCoordinator:
    """In-process ledger of point reservations keyed by execution id.

    The ledger lives as long as the worker process; it coordinates the
    process's own concurrent pipelines and does not replace the upstream
    API's enforcement.
    """

    def __init__(
        self,
        total_points: float,
        cost_per_combination: float = 51.0,
        safety_margin: float = 1.10,
    ) -> None:
        self.total_points = total_points
        self.cost_per_combination = cost_per_combination
        self.safety_margin = safety_margin
        self._reservations: dict[str, float] = {}
        self._lock = threading.Lock()

    def estimate(self, spec_count: int, dungeon_count: int) -> float:
        return spec_count * dungeon_count * self.cost_per_combination * self.safety_margin

    def reserve_points(self, execution_id: str, spec_count: int, dungeon_count: int) -> float:
        """Reserve the estimated cost of a pipeline run.

        Raises:
            BudgetExceededError: If the reservation does not fit the remaining
                budget or ``execution_id`` already holds one. Nothing is reserved.
        """
        required = self.estimate(spec_count, dungeon_count)
        with self._lock:
            remaining = self.total_points - sum(self._reservations.values())
            if execution_id in self._reservations:
                raise BudgetExceededError(
                    f"Execution {execution_id} already holds a reservation",
                    required=required,
                    remaining=remaining,
                )
            if required > remaining:
                logger.warning(
                    "rate_budget_exhausted",
                    execution_id=execution_id,
                    required=required,
                    remaining=remaining,
                )
                raise BudgetExceededError(
                    f"Insufficient rate budget: required {required:.1f}, remaining {remaining:.1f}",
                    required=required,
                    remaining=remaining,
                )
            self._reservations[execution_id] = required
        logger.info(
            "rate_budget_reserved",
            execution_id=execution_id,
            points=required,
            remaining=remaining - required,
        )
        return required

    def release_points(self, execution_id: str) -> float:
        """Return an execution's reservation. Releasing twice is a no-op."""
        with self._lock:
            released = self._reservations.pop(execution_id, 0.0)
        if released:
            logger.info("rate_budget_released", execution_id=execution_id, points=released)
        return released

    def outstanding(self) -> float:
        with self._lock:
            return sum(self._reservations.values())

    def remaining(self) -> float:
        return self.total_points - self.outstanding()

    def update_total(self, points_per_hour: float) -> None:
        """Follow the upstream hourly allowance; existing reservations are kept."""
        with self._lock:
            previous, self.total_points = self.total_points, points_per_hour
        if previous != points_per_hour:
            logger.info("rate_budget_total_updated", total_points=points_per_hour, previous=previous)

    def snapshot(self) -> BudgetSnapshot:
        with self._lock:
            reservations = dict(self._reservations)
        return BudgetSnapshot(
            total_points=self.total_points,
            reserved_points=sum(reservations.values()),
            reservations=reservations,
        )


def refresh_rate_limit(actx: ActivityContext) -> dict[str, Any]:
    """Poll the upstream point allowance before a page of API work.

    The hourly limit becomes the worker ledger's total.

    Raises:
        QuotaExceededError: When this hour's points are spent; the stage
            continues after ``points_reset_in``
    """
    snapshot = actx.resources.client().get_rate_limit()
    budget = actx.resources.budget
    if snapshot.limit_per_hour > 0:
        budget.update_total(snapshot.limit_per_hour)
    ledger = budget.snapshot()
    logger.debug(
        "rate_limit_polled",
        remaining=snapshot.remaining_points,
        reset_in=snapshot.points_reset_in,
        reserved=ledger.reserved_points,
        unreserved=ledger.remaining_points,
    )
    raise_if_exhausted(snapshot)
    return snapshot.model_dump()
