"""Per-process resources shared by every workflow execution of a worker."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable

from ..config import Settings, get_settings
from ..persistence import WorkflowStateStore
from ..services.rate_budget import RateBudgetCoordinator
from ..wcl import WarcraftLogsClient


@dataclass
class WorkerResources:
    settings: Settings
    state_store: WorkflowStateStore
    budget: RateBudgetCoordinator
    client_factory: Callable[[], WarcraftLogsClient]
    _client: WarcraftLogsClient | None = field(default=None, init=False, repr=False)
    _client_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def client(self) -> WarcraftLogsClient:
        """The worker's upstream client, created on first use."""
        with self._client_lock:
            if self._client is None:
                self._client = self.client_factory()
            return self._client

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None


def build_worker_resources(settings: Settings | None = None) -> WorkerResources:
    settings = settings or get_settings()
    return WorkerResources(
        settings=settings,
        state_store=WorkflowStateStore(),
        budget=RateBudgetCoordinator(
            total_points=settings.rate_budget.total_points,
            cost_per_combination=settings.rate_budget.cost_per_combination,
            safety_margin=settings.rate_budget.safety_margin,
        ),
        client_factory=lambda: WarcraftLogsClient(config=settings.warcraftlogs),
    )


@lru_cache(maxsize=1)
def get_worker_resources() -> WorkerResources:
    """Resources of the current worker process (one budget ledger per process)."""
    return build_worker_resources()
