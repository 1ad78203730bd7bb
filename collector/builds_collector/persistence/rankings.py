"""Ranking persistence: replace-per-combination storage and report marking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..db import db_models
from ..logging import logger
from ..models import RankingEntry
from ..utils.datetime_utils import now_utc

__all__ = [
    "RankingsStoreResult",
    "get_last_refresh",
    "store_rankings",
    "mark_rankings_for_reports",
    "count_rankings_in_batch",
    "get_rankings_page",
    "set_ranking_report_status",
]


@dataclass(frozen=True)
class RankingsStoreResult:
    inserted: int
    deleted: int
    kept: int

    @property
    def stored(self) -> int:
        return self.inserted + self.kept


def get_last_refresh(
    session: Session, encounter_id: int, class_name: str, spec_name: str
) -> datetime | None:
    """Most recent write to the rankings of one class/spec/dungeon."""
    model = db_models.ClassRanking
    stmt = select(func.max(model.updated_at)).where(
        model.encounter_id == encounter_id,
        model.class_name == class_name,
        model.spec_name == spec_name,
    )
    return session.execute(stmt).scalar()


def store_rankings(
    session: Session,
    encounter_id: int,
    class_name: str,
    spec_name: str,
    entries: Sequence[RankingEntry],
) -> RankingsStoreResult:
    """Replace the stored leaderboard of one class/spec/dungeon.

    Entries already stored are kept untouched (their report status survives),
    new entries are inserted and entries that fell off the leaderboard are
    deleted.
    """
    model = db_models.ClassRanking
    existing = {
        (row.report_code, row.report_fight_id, row.player_name): row
        for row in session.scalars(
            select(model).where(
                model.encounter_id == encounter_id,
                model.class_name == class_name,
                model.spec_name == spec_name,
            )
        )
    }

    inserted = 0
    kept = 0
    seen: set[tuple[str, int, str]] = set()
    for entry in entries:
        identity = entry.identity
        if identity in seen:
            continue
        seen.add(identity)
        row = existing.pop(identity, None)
        if row is not None:
            row.score = entry.score
            row.amount = entry.amount
            row.updated_at = now_utc()
            kept += 1
            continue
        session.add(model(**entry.model_dump()))
        inserted += 1

    deleted = 0
    if existing:
        stale_ids = [row.id for row in existing.values()]
        deleted = session.execute(delete(model).where(model.id.in_(stale_ids))).rowcount or 0
    session.flush()

    logger.info(
        "rankings_stored",
        encounter_id=encounter_id,
        class_name=class_name,
        spec_name=spec_name,
        inserted=inserted,
        kept=kept,
        deleted=deleted,
    )
    return RankingsStoreResult(inserted=inserted, deleted=deleted, kept=kept)


def mark_rankings_for_reports(
    session: Session,
    encounter_id: int,
    class_name: str,
    spec_name: str,
    batch_id: str,
) -> int:
    """Attach unprocessed rankings of a combination to ``batch_id``."""
    model = db_models.ClassRanking
    stmt = (
        update(model)
        .where(
            model.encounter_id == encounter_id,
            model.class_name == class_name,
            model.spec_name == spec_name,
            model.report_status.in_(
                [
                    db_models.RankingReportStatus.PENDING,
                    db_models.RankingReportStatus.FAILED,
                ]
            ),
        )
        .values(
            report_batch_id=batch_id,
            report_status=db_models.RankingReportStatus.PENDING,
            updated_at=now_utc(),
        )
    )
    return session.execute(stmt).rowcount or 0


def count_rankings_in_batch(session: Session, batch_id: str) -> int:
    model = db_models.ClassRanking
    stmt = select(func.count(model.id)).where(model.report_batch_id == batch_id)
    return session.execute(stmt).scalar() or 0


def get_rankings_page(
    session: Session, batch_id: str, offset: int, limit: int
) -> list[int]:
    """Ids of the rankings of a batch, in stable id order."""
    model = db_models.ClassRanking
    stmt = (
        select(model.id)
        .where(model.report_batch_id == batch_id)
        .order_by(model.id)
        .offset(offset)
        .limit(limit)
    )
    return list(session.scalars(stmt))


def set_ranking_report_status(session: Session, ranking_id: int, status: str) -> None:
    model = db_models.ClassRanking
    session.execute(
        update(model)
        .where(model.id == ranking_id)
        .values(report_status=status, report_processed_at=now_utc())
    )
