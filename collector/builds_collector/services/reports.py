"""Reports activity: fetch fight details and talent codes for one ranking."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..db import db_models, get_session
from ..errors import classify_error, is_rate_limit, is_retryable
from ..logging import logger
from ..models import ItemOutcome, PlayerDetail
from ..persistence.rankings import set_ranking_report_status
from ..persistence.reports import report_exists, upsert_report

if TYPE_CHECKING:
    from ..orchestration.activities import ActivityContext


def process_ranking_report(actx: ActivityContext, ranking_id: int, batch_id: str) -> ItemOutcome:
    """Make sure the report behind ``ranking_id`` is stored and queued for builds.

    Rate-limit errors propagate so the stage can continue later. Retryable
    errors propagate while attempts remain; anything else marks the ranking
    failed and is reported as a failed item.
    """
    statuses = db_models.RankingReportStatus
    with get_session() as session:
        ranking = session.get(db_models.ClassRanking, ranking_id)
        if ranking is None:
            logger.warning("ranking_missing", ranking_id=ranking_id)
            return ItemOutcome(status="skipped")
        if ranking.report_status == statuses.PROCESSED:
            return ItemOutcome(status="skipped")
        code, fight_id = ranking.report_code, ranking.report_fight_id
        if report_exists(session, code, fight_id):
            set_ranking_report_status(session, ranking_id, statuses.PROCESSED)
            return ItemOutcome(status="skipped")

    client = actx.resources.client()
    api_requests = 0
    try:
        detail = client.fetch_report(code, fight_id)
        api_requests += 1
        actx.heartbeat({"ranking_id": ranking_id, "step": "report"})
        players = [PlayerDetail.model_validate(raw) for _, raw in detail.players()]
        talent_codes = client.fetch_talent_codes(code, fight_id, players)
        api_requests += 1
        with get_session() as session:
            upsert_report(session, detail, talent_codes, batch_id)
            set_ranking_report_status(session, ranking_id, statuses.PROCESSED)
    except Exception as exc:
        if is_rate_limit(exc) or (is_retryable(exc) and not actx.is_final_attempt):
            raise
        return _fail_ranking(ranking_id, exc, api_requests)

    logger.debug("ranking_report_stored", ranking_id=ranking_id, code=code, fight_id=fight_id)
    return ItemOutcome(
        status="processed",
        api_requests=api_requests,
        counters={"reports_stored": 1},
    )


def _fail_ranking(ranking_id: int, exc: BaseException, api_requests: int) -> ItemOutcome:
    logger.warning(
        "ranking_report_failed",
        ranking_id=ranking_id,
        error=str(exc),
        error_type=classify_error(exc).value,
    )
    with get_session() as session:
        set_ranking_report_status(session, ranking_id, db_models.RankingReportStatus.FAILED)
    return ItemOutcome(status="failed", api_requests=api_requests, error=str(exc))
