"""Report persistence."""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db import db_models
from ..models import ReportDetail
from ..utils.datetime_utils import now_utc
from ..utils.db_queries import dialect_insert


def report_exists(session: Session, code: str, fight_id: int) -> bool:
    return session.get(db_models.Report, (code, fight_id)) is not None


def upsert_report(
    session: Session,
    detail: ReportDetail,
    talent_codes: dict[str, str],
    batch_id: str,
) -> None:
    """Create or update a report and queue it for build extraction in ``batch_id``."""
    values = {
        **detail.model_dump(),
        "talent_codes": talent_codes,
        "build_status": db_models.BuildExtractionStatus.PENDING,
        "build_batch_id": batch_id,
        "build_error": None,
        "created_at": now_utc(),
        "updated_at": now_utc(),
    }
    stmt = dialect_insert(session, db_models.Report).values(**values)
    updatable = {
        key: getattr(stmt.excluded, key)
        for key in values
        if key not in {"code", "fight_id", "created_at"}
    }
    stmt = stmt.on_conflict_do_update(index_elements=["code", "fight_id"], set_=updatable)
    session.execute(stmt)


def count_reports_in_batch(session: Session, batch_id: str) -> int:
    model = db_models.Report
    stmt = select(func.count()).select_from(model).where(model.build_batch_id == batch_id)
    return session.execute(stmt).scalar() or 0


def get_report_keys_page(
    session: Session, batch_id: str, offset: int, limit: int
) -> list[tuple[str, int]]:
    """(code, fight_id) pairs of a batch in stable order."""
    model = db_models.Report
    stmt = (
        select(model.code, model.fight_id)
        .where(model.build_batch_id == batch_id)
        .order_by(model.code, model.fight_id)
        .offset(offset)
        .limit(limit)
    )
    return [(code, fight_id) for code, fight_id in session.execute(stmt)]


def set_report_build_status(
    session: Session,
    code: str,
    fight_id: int,
    status: str,
    error: str | None = None,
) -> None:
    model = db_models.Report
    session.execute(
        update(model)
        .where(model.code == code, model.fight_id == fight_id)
        .values(build_status=status, build_extracted_at=now_utc(), build_error=error)
    )
