"""Tests for services/metrics.py."""

from __future__ import annotations

import threading

from builds_collector.services.metrics import MetricsCollector, OperationTiming


class TestOperationTiming:
    def test_empty(self):
        assert OperationTiming().as_dict()["avg_seconds"] == 0.0

    def test_aggregates(self):
        timing = OperationTiming()
        timing.add(1.0)
        timing.add(3.0)
        assert timing.as_dict() == {
            "count": 2,
            "total_seconds": 4.0,
            "avg_seconds": 2.0,
            "max_seconds": 3.0,
        }


class TestMetricsCollector:
    def test_snapshot(self):
        metrics = MetricsCollector("reports")
        metrics.increment("items_processed")
        metrics.increment("items_processed", 2)
        metrics.record_error("api")
        with metrics.time("load_page"):
            pass

        snapshot = metrics.snapshot()
        assert snapshot["workflow_type"] == "reports"
        assert snapshot["counters"] == {"items_processed": 3}
        assert snapshot["errors"] == {"api": 1}
        assert snapshot["operations"]["load_page"]["count"] == 1

    def test_timing_recorded_when_block_raises(self):
        metrics = MetricsCollector("builds")
        try:
            with metrics.time("process_page"):
                raise ValueError("boom")
        except ValueError:
            pass
        assert metrics.snapshot()["operations"]["process_page"]["count"] == 1

    def test_concurrent_increments(self):
        metrics = MetricsCollector("builds")

        def work():
            for _ in range(1000):
                metrics.increment("batches_succeeded")

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert metrics.snapshot()["counters"]["batches_succeeded"] == 8000
