"""Tests for the statistics aggregators and the statistics workflow."""

from __future__ import annotations

from collections import defaultdict
from unittest.mock import patch

import pytest
from sqlalchemy import select, update

from builds_collector.db import db_models, get_session
from builds_collector.errors import ActivityTimeoutError
from builds_collector.models import StatisticsKey
from builds_collector.orchestration import statistics as statistics_workflow
from builds_collector.orchestration.local import LocalRuntime
from builds_collector.persistence.player_builds import replace_report_builds
from builds_collector.persistence.reports import upsert_report
from builds_collector.services.player_builds import build_rows
from builds_collector.statistics import (
    ItemStatisticsAggregator,
    StatStatisticsAggregator,
    TalentStatisticsAggregator,
)

from conftest import make_player, make_report_detail

KEY = StatisticsKey(class_name="Priest", spec_name="Discipline", encounter_id=12660)

# (item id in slot 0, its enchant, crit rating, talent import code) per stored build
BUILDS = [
    (212000, 7001, 1000.0, "CODE-A"),
    (212000, 7002, 1100.0, "CODE-A"),
    (212000, 7003, 1200.0, "CODE-A"),
    (212001, 7004, 1300.0, "CODE-B"),
]


@pytest.fixture
def stored_builds(db_engine):
    for index, (item_id, enchant, crit, talent_code) in enumerate(BUILDS):
        code = f"s{index}"
        player = make_player(1, item_id=item_id, crit=crit)
        player["combatantInfo"]["gear"][0]["permanentEnchant"] = enchant
        with get_session() as session:
            upsert_report(
                session,
                make_report_detail(code, players=[player]),
                {"Priest_Discipline_talents": talent_code},
                "batch-1",
            )
        with get_session() as session:
            report = session.get(db_models.Report, (code, 1))
            rows, _ = build_rows(report, "batch-1")
            replace_report_builds(session, code, 1, rows)


def rows_of(model):
    with get_session() as session:
        return list(session.scalars(select(model)))


def percentages_by_group(rows, group):
    totals = defaultdict(float)
    for row in rows:
        totals[group(row)] += row.usage_percentage
    return totals


def column_values(rows):
    """Every stored column except the surrogate key and timestamps."""
    skipped = {"id", "created_at", "updated_at"}
    values = [
        tuple((c.key, getattr(row, c.key)) for c in row.__table__.columns if c.key not in skipped)
        for row in rows
    ]
    return sorted(values, key=repr)


class TestItemStatistics:
    def test_usage_per_slot(self, stored_builds):
        result = ItemStatisticsAggregator(page_size=3, num_workers=2).run(KEY)

        assert result.builds_total == 4
        assert result.builds_invalid == 0
        assert result.rows_written == 2

        rows = {row.item_id: row for row in rows_of(db_models.ItemStatistic)}
        assert rows[212000].usage_count == 3
        assert rows[212000].usage_percentage == pytest.approx(75.0)
        assert rows[212001].usage_percentage == pytest.approx(25.0)
        assert rows[212000].item_name == "Item 212000"
        assert rows[212000].permanent_enchant_id == 7001
        # Empty slots are not counted
        assert 0 not in rows
        for total in percentages_by_group(rows.values(), lambda r: r.item_slot).values():
            assert total == pytest.approx(100.0)

    def test_attributes_come_from_lowest_build(self, stored_builds):
        ItemStatisticsAggregator(page_size=4, num_workers=4).run(KEY)

        rows = {row.item_id: row for row in rows_of(db_models.ItemStatistic)}
        assert rows[212000].permanent_enchant_id == 7001
        assert rows[212001].permanent_enchant_id == 7004

    def test_rerun_is_idempotent(self, stored_builds):
        aggregator = ItemStatisticsAggregator(page_size=4, num_workers=4)
        first = aggregator.run(KEY)
        before = column_values(rows_of(db_models.ItemStatistic))

        second = aggregator.run(KEY)
        after = column_values(rows_of(db_models.ItemStatistic))

        assert second.rows_deleted == first.rows_written
        assert before == after

    def test_heartbeat_per_page(self, stored_builds):
        beats = []

        ItemStatisticsAggregator(page_size=1, num_workers=2).run(KEY, heartbeat=beats.append)

        assert [beat.get("offset") for beat in beats] == [0, 1, 2, 3, None]
        assert beats[-1]["stage"] == "upsert"
        assert {beat["statistic"] for beat in beats} == {"items"}

    def test_abandoned_run_keeps_previous_rows(self, stored_builds):
        aggregator = ItemStatisticsAggregator(page_size=1, num_workers=2)
        aggregator.run(KEY)
        before = column_values(rows_of(db_models.ItemStatistic))

        def heartbeat(details):
            if details.get("offset") == 2:
                raise ActivityTimeoutError("heartbeat timeout exceeded", kind="heartbeat")

        with pytest.raises(ActivityTimeoutError):
            aggregator.run(KEY, heartbeat=heartbeat)

        assert column_values(rows_of(db_models.ItemStatistic)) == before

    def test_invalid_payload_is_counted(self, stored_builds):
        with get_session() as session:
            session.execute(
                update(db_models.PlayerBuild)
                .where(db_models.PlayerBuild.report_code == "s3")
                .values(gear={"kind": "gear", "schema_version": 99, "data": []})
            )

        result = ItemStatisticsAggregator().run(KEY)

        assert result.builds_total == 4
        assert result.builds_invalid == 1
        rows = rows_of(db_models.ItemStatistic)
        assert [(r.item_id, r.usage_percentage) for r in rows] == [(212000, pytest.approx(100.0))]

    def test_key_without_builds(self, db_engine):
        other = StatisticsKey(class_name="Mage", spec_name="Frost", encounter_id=12660)
        result = ItemStatisticsAggregator().run(other)
        assert result.builds_total == 0
        assert result.rows_written == 0

    def test_rejects_non_positive_page_size(self):
        with pytest.raises(ValueError):
            ItemStatisticsAggregator(page_size=0)


class TestTalentStatistics:
    def test_loadout_usage(self, stored_builds):
        result = TalentStatisticsAggregator(page_size=10, num_workers=4).run(KEY)

        assert result.rows_written == 2
        rows = {row.talent_import: row for row in rows_of(db_models.TalentStatistic)}
        assert rows["CODE-A"].usage_percentage == pytest.approx(75.0)
        assert rows["CODE-B"].usage_percentage == pytest.approx(25.0)
        assert sum(r.usage_percentage for r in rows.values()) == pytest.approx(100.0)
        assert rows["CODE-A"].avg_keystone_level == pytest.approx(12.0)


class TestStatStatistics:
    def test_secondary_stat_values(self, stored_builds):
        StatStatisticsAggregator(page_size=1, num_workers=2).run(KEY)

        rows = {row.stat_name: row for row in rows_of(db_models.StatStatistic)}
        # Primary stats are not tracked
        assert set(rows) == {"Crit", "Haste"}
        crit = rows["Crit"]
        assert crit.stat_category == "secondary"
        assert crit.avg_value == pytest.approx(1150.0)
        assert crit.min_value == pytest.approx(1000.0)
        assert crit.max_value == pytest.approx(1300.0)
        assert rows["Haste"].avg_value == pytest.approx(850.0)
        for total in percentages_by_group(rows.values(), lambda r: r.stat_category).values():
            assert total == pytest.approx(100.0)


class TestStatisticsWorkflow:
    @pytest.fixture
    def runtime(self, resources):
        rt = LocalRuntime(resources, sleep=lambda seconds: None)
        yield rt
        rt.shutdown()

    def params(self):
        return {**KEY.model_dump(), "batch_id": "batch-1"}

    def test_runs_every_aggregator(self, stored_builds, runtime, resources):
        with patch(
            "builds_collector.orchestration.statistics.acquire_redis_lock", return_value="token-1"
        ) as acquire, patch(
            "builds_collector.orchestration.statistics.release_redis_lock"
        ) as release:
            result = runtime.execute("statistics", self.params(), execution_id="stats-1")

        assert result["status"] == "completed"
        assert set(result["results"]) == {"items", "talents", "stats"}
        assert result["results"]["items"]["rows_written"] == 2
        acquire.assert_called_once()
        release.assert_called_once_with("lock:statistics:Priest:Discipline:12660", "token-1")

        state = resources.state_store.get("statistics-stats-1")
        assert state.status == "completed"
        assert state.items_processed == 3
        assert state.batch_id == "batch-1"

    def test_redelivered_run_replays_results(self, stored_builds, runtime, monkeypatch):
        aggregated = []
        real_aggregate = statistics_workflow.aggregate_statistics

        def aggregate(actx, statistic, key):
            aggregated.append(statistic)
            return real_aggregate(actx, statistic, key)

        monkeypatch.setattr(statistics_workflow, "aggregate_statistics", aggregate)
        with patch(
            "builds_collector.orchestration.statistics.acquire_redis_lock", return_value="token-1"
        ), patch(
            "builds_collector.orchestration.statistics.release_redis_lock"
        ):
            first = runtime.execute("statistics", self.params(), execution_id="stats-2")
            again = runtime.execute("statistics", self.params(), execution_id="stats-2")

        assert again == first
        assert aggregated == ["items", "talents", "stats"]

    def test_locked_key_is_skipped(self, stored_builds, runtime):
        with patch(
            "builds_collector.orchestration.statistics.acquire_redis_lock", return_value=None
        ), patch(
            "builds_collector.orchestration.statistics.release_redis_lock"
        ) as release:
            result = runtime.execute("statistics", self.params())

        assert result["status"] == "skipped"
        assert result["reason"] == "locked"
        release.assert_not_called()
        assert rows_of(db_models.ItemStatistic) == []
