"""Tests for ranking, report and build persistence against SQLite."""

from __future__ import annotations

from sqlalchemy import select

from builds_collector.db import db_models, get_session
from builds_collector.models import StatisticsKey
from builds_collector.persistence.player_builds import (
    count_builds,
    get_builds_page,
    get_statistics_keys,
    replace_report_builds,
)
from builds_collector.persistence.rankings import (
    count_rankings_in_batch,
    get_last_refresh,
    get_rankings_page,
    mark_rankings_for_reports,
    set_ranking_report_status,
    store_rankings,
)
from builds_collector.persistence.reports import (
    count_reports_in_batch,
    get_report_keys_page,
    report_exists,
    set_report_build_status,
    upsert_report,
)
from builds_collector.services.player_builds import build_rows

from conftest import make_player, make_ranking, make_report_detail

ENCOUNTER = 12660


class TestStoreRankings:
    def test_insert_then_replace(self, db_engine):
        with get_session() as session:
            first = store_rankings(session, ENCOUNTER, "Priest", "Discipline", [make_ranking(i) for i in range(3)])
        assert (first.inserted, first.kept, first.deleted) == (3, 0, 0)

        with get_session() as session:
            second = store_rankings(
                session, ENCOUNTER, "Priest", "Discipline", [make_ranking(i) for i in (1, 2, 3)]
            )
        assert (second.inserted, second.kept, second.deleted) == (1, 2, 1)
        assert second.stored == 3

    def test_duplicate_entries_are_stored_once(self, db_engine):
        with get_session() as session:
            result = store_rankings(session, ENCOUNTER, "Priest", "Discipline", [make_ranking(0), make_ranking(0)])
        assert result.inserted == 1

    def test_kept_rows_keep_report_status(self, db_engine):
        with get_session() as session:
            store_rankings(session, ENCOUNTER, "Priest", "Discipline", [make_ranking(0)])
            ranking_id = session.scalars(select(db_models.ClassRanking.id)).one()
            set_ranking_report_status(session, ranking_id, "processed")
        with get_session() as session:
            store_rankings(session, ENCOUNTER, "Priest", "Discipline", [make_ranking(0)])
            assert session.get(db_models.ClassRanking, ranking_id).report_status == "processed"

    def test_last_refresh(self, db_engine):
        with get_session() as session:
            assert get_last_refresh(session, ENCOUNTER, "Priest", "Discipline") is None
            store_rankings(session, ENCOUNTER, "Priest", "Discipline", [make_ranking(0)])
            session.flush()
            assert get_last_refresh(session, ENCOUNTER, "Priest", "Discipline") is not None


class TestMarkRankings:
    def test_marks_pending_and_failed_only(self, db_engine):
        with get_session() as session:
            store_rankings(session, ENCOUNTER, "Priest", "Discipline", [make_ranking(i) for i in range(3)])
            ids = list(session.scalars(select(db_models.ClassRanking.id).order_by(db_models.ClassRanking.id)))
            set_ranking_report_status(session, ids[0], "processed")
            set_ranking_report_status(session, ids[1], "failed")

        with get_session() as session:
            marked = mark_rankings_for_reports(session, ENCOUNTER, "Priest", "Discipline", "batch-1")
        assert marked == 2

        with get_session() as session:
            assert count_rankings_in_batch(session, "batch-1") == 2
            assert get_rankings_page(session, "batch-1", 0, 10) == ids[1:]
            assert get_rankings_page(session, "batch-1", 1, 10) == ids[2:]
            assert session.get(db_models.ClassRanking, ids[1]).report_status == "pending"


class TestReports:
    def test_upsert_report_requeues(self, db_engine):
        detail = make_report_detail("abc")
        with get_session() as session:
            upsert_report(session, detail, {"Priest_Discipline_talents": "CODE"}, "batch-1")
        with get_session() as session:
            set_report_build_status(session, "abc", 1, "completed")
        with get_session() as session:
            upsert_report(session, detail, {}, "batch-2")

        with get_session() as session:
            assert report_exists(session, "abc", 1)
            report = session.get(db_models.Report, ("abc", 1))
            assert report.build_status == "pending"
            assert report.build_batch_id == "batch-2"
            assert count_reports_in_batch(session, "batch-2") == 1
            assert get_report_keys_page(session, "batch-2", 0, 10) == [("abc", 1)]


class TestPlayerBuilds:
    def _store_report(self, code, players, talent_codes=None):
        with get_session() as session:
            upsert_report(session, make_report_detail(code, players=players), talent_codes or {}, "batch-1")

    def test_build_rows_skips_incomplete_players(self, db_engine):
        incomplete = {"id": 9, "name": "Ghost", "type": "Priest", "specs": []}
        self._store_report("abc", [make_player(1), incomplete], {"Priest_Discipline_talents": "CODE"})
        with get_session() as session:
            report = session.get(db_models.Report, ("abc", 1))
            rows, skipped = build_rows(report, "batch-1")

        assert skipped == 1
        assert len(rows) == 1
        row = rows[0]
        assert row["role"] == "healer"
        assert row["talent_import"] == "CODE"
        assert row["talents"]["import_code"] == "CODE"
        assert row["gear"]["kind"] == "gear"
        assert row["extraction_batch_id"] == "batch-1"

    def test_replace_report_builds(self, db_engine):
        self._store_report("abc", [make_player(1), make_player(2, name="Tyrande")])
        with get_session() as session:
            report = session.get(db_models.Report, ("abc", 1))
            rows, _ = build_rows(report, "batch-1")
            replace_report_builds(session, "abc", 1, rows)
        with get_session() as session:
            replace_report_builds(session, "abc", 1, rows[:1])

        key = StatisticsKey(class_name="Priest", spec_name="Discipline", encounter_id=ENCOUNTER)
        with get_session() as session:
            assert count_builds(session, key) == 1
            assert len(get_builds_page(session, key, 0, 10)) == 1
            assert get_statistics_keys(session, "batch-1") == [key]
            assert get_statistics_keys(session, "batch-9") == []
