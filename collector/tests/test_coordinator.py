"""End-to-end pipeline runs on the in-process runtime."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from builds_collector.errors import BudgetExceededError, ChildExecutionError, ConfigurationError
from builds_collector.orchestration.coordinator import PipelineParams
from builds_collector.orchestration.local import LocalRuntime
from builds_collector.services.rate_budget import RateBudgetCoordinator

SPEC = {"class_name": "Priest", "spec_name": "Discipline"}
DUNGEON = {"encounter_id": 12660, "name": "Ara-Kara"}


@pytest.fixture
def runtime(resources):
    rt = LocalRuntime(resources, sleep=lambda seconds: None)
    yield rt
    rt.shutdown()


@pytest.fixture
def redis_locks():
    with patch(
        "builds_collector.orchestration.statistics.acquire_redis_lock", return_value="token"
    ), patch("builds_collector.orchestration.statistics.release_redis_lock"):
        yield


def pipeline_params(**kwargs):
    values = {"specs": [SPEC], "dungeons": [DUNGEON], "batch_id": "batch-1"}
    values.update(kwargs)
    return PipelineParams(**values).model_dump(mode="json")


class TestPipeline:
    def test_happy_path(self, runtime, resources, fake_client, redis_locks):
        result = runtime.execute("pipeline", pipeline_params(), execution_id="run-1")

        assert result["status"] == "completed"
        assert result["batch_id"] == "batch-1"
        assert result["reserved_points"] == pytest.approx(56.1)
        assert result["rankings_stored"] == 3
        assert result["reports_stored"] == 3
        assert result["builds_processed"] == 3
        assert result["builds_by_class_spec"] == {"Priest-Discipline": 3}
        # One rankings query plus report and talent queries per ranking
        assert result["api_requests"] == 7
        assert result["statistics"] == {"keys": 1, "completed": 1, "skipped": 0, "failed": 0}
        assert list(result["stages"]) == ["rankings", "reports", "builds"]

        store = resources.state_store
        state = store.get("pipeline-run-1")
        assert state.status == "completed"
        assert state.items_processed == 3
        assert state.result_summary["builds_processed"] == 3
        for stage in ("rankings", "reports", "builds"):
            assert store.get(f"{stage}-run-1-{stage}").status == "completed"
        assert resources.budget.snapshot().reservations == {}

    def test_over_budget_is_rejected(self, runtime, resources, fake_client):
        resources.budget = RateBudgetCoordinator(total_points=100.0)
        params = pipeline_params(
            specs=[SPEC, {"class_name": "Mage", "spec_name": "Frost"}],
            dungeons=[DUNGEON, {"encounter_id": 12669, "name": "City of Threads"}],
        )

        with pytest.raises(BudgetExceededError) as info:
            runtime.execute("pipeline", params, execution_id="run-2")

        assert info.value.required == pytest.approx(224.4)
        assert resources.state_store.get("pipeline-run-2").status == "failed"
        assert resources.budget.outstanding() == 0
        assert fake_client.calls["rankings"] == 0

    def test_empty_specs_are_rejected(self, runtime, resources):
        with pytest.raises(ConfigurationError):
            runtime.execute("pipeline", pipeline_params(specs=[]), execution_id="run-3")
        assert resources.state_store.get("pipeline-run-3").status == "failed"

    def test_failed_stage_fails_pipeline_and_releases_budget(self, runtime, resources, fake_client):
        def broken(*args, **kwargs):
            raise ConfigurationError("credentials revoked")

        fake_client.fetch_rankings = broken

        with pytest.raises(ChildExecutionError, match="rankings stage failed"):
            runtime.execute("pipeline", pipeline_params(), execution_id="run-4")

        assert resources.state_store.get("pipeline-run-4").status == "failed"
        assert resources.state_store.get("rankings-run-4-rankings").status == "failed"
        assert resources.budget.outstanding() == 0

    def test_cancelled_before_first_stage(self, runtime, resources, fake_client):
        runtime.cancel("run-5")
        result = runtime.execute("pipeline", pipeline_params(), execution_id="run-5")

        assert result["status"] == "cancelled"
        assert result["stages"] == {}
        assert resources.state_store.get("pipeline-run-5").status == "failed"
        assert resources.budget.outstanding() == 0
        assert fake_client.calls["rankings"] == 0

    def test_skips_statistics_when_disabled(self, runtime, resources):
        result = runtime.execute("pipeline", pipeline_params(run_statistics=False), execution_id="run-6")
        assert result["statistics"] is None
        assert resources.state_store.list_by_type("statistics") == []
