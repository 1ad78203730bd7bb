"""Player build persistence."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..db import db_models
from ..models import StatisticsKey


def replace_report_builds(
    session: Session,
    code: str,
    fight_id: int,
    builds: Sequence[dict[str, Any]],
) -> int:
    """Store a fresh snapshot of a report's builds.

    Builds are never edited in place: a re-extraction removes the report's
    previous rows and inserts the new ones in the same transaction.
    """
    model = db_models.PlayerBuild
    session.execute(delete(model).where(model.report_code == code, model.fight_id == fight_id))
    for build in builds:
        session.add(model(**build))
    session.flush()
    return len(builds)


def _key_filter(key: StatisticsKey):
    model = db_models.PlayerBuild
    return (
        model.class_name == key.class_name,
        model.spec_name == key.spec_name,
        model.encounter_id == key.encounter_id,
    )


def count_builds(session: Session, key: StatisticsKey) -> int:
    model = db_models.PlayerBuild
    stmt = select(func.count(model.id)).where(*_key_filter(key))
    return session.execute(stmt).scalar() or 0


def get_builds_page(
    session: Session, key: StatisticsKey, offset: int, limit: int
) -> list[db_models.PlayerBuild]:
    model = db_models.PlayerBuild
    stmt = (
        select(model)
        .where(*_key_filter(key))
        .order_by(model.id)
        .offset(offset)
        .limit(limit)
    )
    return list(session.scalars(stmt))


def get_statistics_keys(session: Session, batch_id: str | None = None) -> list[StatisticsKey]:
    """Distinct class/spec/encounter keys, optionally limited to one extraction batch."""
    model = db_models.PlayerBuild
    stmt = select(model.class_name, model.spec_name, model.encounter_id).distinct()
    if batch_id is not None:
        stmt = stmt.where(model.extraction_batch_id == batch_id)
    stmt = stmt.order_by(model.class_name, model.spec_name, model.encounter_id)
    return [
        StatisticsKey(class_name=c, spec_name=s, encounter_id=e)
        for c, s, e in session.execute(stmt)
    ]
