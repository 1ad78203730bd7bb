"""Per-execution metrics persisted alongside workflow checkpoints."""

from __future__ import annotations

import threading
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class OperationTiming:
    count: int = 0
    total_seconds: float = 0.0
    max_seconds: float = 0.0

    def add(self, seconds: float) -> None:
        self.count += 1
        self.total_seconds += seconds
        self.max_seconds = max(self.max_seconds, seconds)

    def as_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "total_seconds": round(self.total_seconds, 3),
            "avg_seconds": round(self.total_seconds / self.count, 3) if self.count else 0.0,
            "max_seconds": round(self.max_seconds, 3),
        }


@dataclass
class MetricsCollector:
    """Counters and timings for one workflow execution.

    Thread-safe: activity attempts and the fan-out launcher record from
    worker threads.
    """

    workflow_type: str
    counters: Counter = field(default_factory=Counter)
    errors: Counter = field(default_factory=Counter)
    timings: dict[str, OperationTiming] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[name] += amount

    def record_error(self, error_type: str) -> None:
        with self._lock:
            self.errors[error_type] += 1

    def record_timing(self, operation: str, seconds: float) -> None:
        with self._lock:
            self.timings.setdefault(operation, OperationTiming()).add(seconds)

    @contextmanager
    def time(self, operation: str) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        finally:
            self.record_timing(operation, time.monotonic() - start)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "workflow_type": self.workflow_type,
                "elapsed_seconds": round(time.monotonic() - self.started_at, 3),
                "counters": dict(self.counters),
                "errors": dict(self.errors),
                "operations": {name: t.as_dict() for name, t in self.timings.items()},
            }
