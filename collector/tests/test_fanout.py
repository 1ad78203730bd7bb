"""Tests for the bounded fan-out launcher on the in-process runtime."""

from __future__ import annotations

import threading
import time
from collections import Counter

import pytest

from builds_collector.errors import ApiError, ErrorType, RateLimitError
from builds_collector.orchestration.fanout import fan_out
from builds_collector.orchestration.local import LocalExecutionContext, LocalRuntime
from builds_collector.orchestration.registry import workflow
from builds_collector.orchestration.substrate import ChildOptions


class ActivityTracker:
    def __init__(self):
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.runs: Counter[int] = Counter()

    def enter(self, index):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.runs[index] += 1

    def leave(self):
        with self.lock:
            self.active -= 1


TRACKER = ActivityTracker()


@workflow("test_fanout_child")
def fanout_child(ctx, params):
    TRACKER.enter(params["index"])
    try:
        time.sleep(0.02)
        if params.get("fail"):
            raise ApiError("upstream exploded", retryable=False)
        if params.get("rate_limited"):
            raise RateLimitError("slow down", retry_after=1)
        return {"index": params["index"]}
    finally:
        TRACKER.leave()


@workflow("test_fanout_sleepy")
def sleepy_child(ctx, params):
    time.sleep(0.5)
    return {}


@pytest.fixture
def runtime():
    global TRACKER
    TRACKER = ActivityTracker()
    rt = LocalRuntime(resources=None, max_workers=16, sleep=lambda seconds: None)
    yield rt
    rt.shutdown()


def parent_context(runtime):
    return LocalExecutionContext(runtime, "parent", "root", ("root",))


class TestFanOut:
    def test_concurrency_bound_and_each_batch_once(self, runtime):
        batches = [{"index": i} for i in range(12)]
        result = fan_out(
            parent_context(runtime),
            "test_fanout_child",
            batches,
            max_concurrency=5,
            child_id=lambda i: f"child-{i}",
        )

        assert result.launched == 12
        assert len(result.results) == 12
        assert result.max_active <= 5
        assert TRACKER.peak <= 5
        assert sorted(r.value["index"] for r in result.succeeded) == list(range(12))
        assert all(count == 1 for count in TRACKER.runs.values())
        assert len(TRACKER.runs) == 12

    def test_failure_isolation(self, runtime):
        batches = [{"index": i, "fail": i == 7} for i in range(12)]
        completed = []
        result = fan_out(
            parent_context(runtime),
            "test_fanout_child",
            batches,
            max_concurrency=5,
            child_id=lambda i: f"child-{i}",
            on_complete=lambda child, progress: completed.append(child.child_id),
        )

        assert len(result.succeeded) == 11
        assert [f.child_id for f in result.failures] == ["child-7"]
        assert result.failures[0].error_type == ErrorType.API
        assert not result.rate_limited
        assert sorted(completed) == sorted(f"child-{i}" for i in range(12))

    def test_rate_limited_children_are_flagged(self, runtime):
        batches = [{"index": 0}, {"index": 1, "rate_limited": True}]
        result = fan_out(
            parent_context(runtime),
            "test_fanout_child",
            batches,
            max_concurrency=2,
            child_id=lambda i: f"child-{i}",
        )
        assert result.rate_limited

    def test_cancelled_parent_launches_nothing_more(self, runtime):
        ctx = parent_context(runtime)
        runtime.cancel("root")
        result = fan_out(ctx, "test_fanout_child", [{"index": 0}], max_concurrency=2, child_id=str)
        assert result.cancelled
        assert result.launched == 0
        assert result.results == []

    def test_child_timeout(self, runtime):
        result = fan_out(
            parent_context(runtime),
            "test_fanout_sleepy",
            [{}],
            max_concurrency=1,
            child_id=lambda i: "sleepy",
            options=ChildOptions(execution_timeout=0.05),
        )
        assert result.failures[0].error_type == ErrorType.TIMEOUT

    def test_rejects_non_positive_concurrency(self, runtime):
        with pytest.raises(ValueError):
            fan_out(parent_context(runtime), "test_fanout_child", [], max_concurrency=0, child_id=str)
