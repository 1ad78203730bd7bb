"""Aggregated statistic persistence (delete per key, upsert by identity)."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import delete
from sqlalchemy.orm import Session

from ..models import StatisticsKey
from ..utils.datetime_utils import now_utc
from ..utils.db_queries import dialect_insert

KEY_COLUMNS = ("class_name", "spec_name", "encounter_id")


def delete_statistics(session: Session, model: Any, key: StatisticsKey) -> int:
    stmt = delete(model).where(
        model.class_name == key.class_name,
        model.spec_name == key.spec_name,
        model.encounter_id == key.encounter_id,
    )
    return session.execute(stmt).rowcount or 0


def upsert_statistics(
    session: Session,
    model: Any,
    rows: Sequence[dict[str, Any]],
    identity_columns: Sequence[str],
) -> int:
    """Insert rows, updating any row that already has the same identity."""
    if not rows:
        return 0
    index_elements = [*KEY_COLUMNS, *identity_columns]
    timestamp = now_utc()
    for row in rows:
        stmt = dialect_insert(session, model).values(
            **row, created_at=timestamp, updated_at=timestamp
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={
                column: getattr(stmt.excluded, column)
                for column in row
                if column not in index_elements
            }
            | {"updated_at": timestamp},
        )
        session.execute(stmt)
    return len(rows)
