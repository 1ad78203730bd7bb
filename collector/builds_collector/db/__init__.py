"""
Database models and session management for the collector service.

Session management for Celery tasks and activities:
    from builds_collector.db import get_session

    with get_session() as session:
        session.add(obj)
        # commit happens on exit, rollback on error
"""

from __future__ import annotations

from contextlib import contextmanager
from types import SimpleNamespace
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..logging import logger
from .base import Base
from .rankings import ClassRanking, RankingReportStatus
from .reports import BuildExtractionStatus, PlayerBuild, Report
from .statistics import ItemStatistic, StatStatistic, TalentStatistic
from .workflow import TERMINAL_STATUSES, WorkflowState, WorkflowStatus

db_models = SimpleNamespace(
    # Enums
    WorkflowStatus=WorkflowStatus,
    RankingReportStatus=RankingReportStatus,
    BuildExtractionStatus=BuildExtractionStatus,
    # Checkpoints
    WorkflowState=WorkflowState,
    # Collected data
    ClassRanking=ClassRanking,
    Report=Report,
    PlayerBuild=PlayerBuild,
    # Aggregates
    ItemStatistic=ItemStatistic,
    TalentStatistic=TalentStatistic,
    StatStatistic=StatStatistic,
)

# Lazy-loaded engine and session factory so importing models never connects.
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.database_url,
            echo=settings.sql_echo,
            future=True,
            pool_pre_ping=True,
        )
    return _engine


def _get_session_factory() -> sessionmaker[Session]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            bind=_get_engine(),
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            class_=Session,
        )
    return _SessionLocal


def bind_engine(engine: Engine) -> None:
    """Point the session factory at an explicit engine (tests, scripts)."""
    global _engine, _SessionLocal
    _engine = engine
    _SessionLocal = None


@contextmanager
def get_session() -> Iterator[Session]:
    """
    Provide a transactional database session context manager.

    Automatically handles commit/rollback and session cleanup.
    """
    session = _get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception("db_session_rollback", error=str(exc))
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "TERMINAL_STATUSES",
    "WorkflowStatus",
    "bind_engine",
    "db_models",
    "get_session",
]
