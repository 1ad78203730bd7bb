"""Build extraction activity: turn stored report details into player builds."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any, Sequence

from ..db import db_models, get_session
from ..errors import classify_error, is_retryable
from ..logging import logger
from ..models import PlayerDetail, envelope
from ..persistence.player_builds import replace_report_builds
from ..persistence.reports import set_report_build_status
from ..wcl.queries import talent_code_alias

if TYPE_CHECKING:
    from ..orchestration.activities import ActivityContext


def build_rows(report: Any, batch_id: str) -> tuple[list[dict[str, Any]], int]:
    """Build rows for every valid player of ``report`` plus the count of skipped players."""
    rows: list[dict[str, Any]] = []
    skipped = 0
    talent_codes = report.talent_codes or {}
    for role, raw in (
        *(("dps", p) for p in report.player_details_dps or []),
        *(("healer", p) for p in report.player_details_healers or []),
        *(("tank", p) for p in report.player_details_tanks or []),
    ):
        player = PlayerDetail.model_validate(raw)
        spec_name = player.spec_name
        if not player.name or not player.type or not spec_name or player.id is None:
            skipped += 1
            continue
        info = player.combatant_info or {}
        talent_import = talent_codes.get(talent_code_alias(player.type, spec_name))
        rows.append(
            {
                "report_code": report.code,
                "fight_id": report.fight_id,
                "actor_id": player.id,
                "player_name": player.name,
                "class_name": player.type,
                "spec_name": spec_name,
                "role": role,
                "encounter_id": report.encounter_id,
                "item_level": player.max_item_level,
                "keystone_level": report.keystone_level,
                "affixes": list(report.affixes or []),
                "gear": envelope("gear", info.get("gear", [])),
                "stats": envelope("stats", info.get("stats", {})),
                "talents": envelope(
                    "talents", info.get("talentTree", []), import_code=talent_import
                ),
                "talent_import": talent_import,
                "extraction_batch_id": batch_id,
            }
        )
    return rows, skipped


def extract_builds(
    actx: ActivityContext,
    report_keys: Sequence[tuple[str, int]],
    batch_id: str,
) -> dict[str, Any]:
    """Extract and store the builds of a batch of reports.

    Reports already marked completed are skipped, so a re-run of the same
    batch after a crash only redoes what is missing.
    """
    statuses = db_models.BuildExtractionStatus
    summary: dict[str, Any] = {
        "reports_processed": 0,
        "reports_skipped": 0,
        "reports_failed": 0,
        "builds_processed": 0,
        "players_skipped": 0,
    }
    by_class_spec: Counter[str] = Counter()

    for index, (code, fight_id) in enumerate(report_keys):
        try:
            with get_session() as session:
                report = session.get(db_models.Report, (code, fight_id))
                if report is None or report.build_status == statuses.COMPLETED:
                    summary["reports_skipped"] += 1
                    continue
                rows, skipped_players = build_rows(report, batch_id)
                replace_report_builds(session, code, fight_id, rows)
                set_report_build_status(session, code, fight_id, statuses.COMPLETED)
        except Exception as exc:
            if is_retryable(exc) and not actx.is_final_attempt:
                raise
            logger.warning(
                "report_builds_failed",
                code=code,
                fight_id=fight_id,
                error=str(exc),
                error_type=classify_error(exc).value,
            )
            with get_session() as session:
                set_report_build_status(session, code, fight_id, statuses.FAILED, error=str(exc)[:2000])
            summary["reports_failed"] += 1
            continue

        summary["reports_processed"] += 1
        summary["builds_processed"] += len(rows)
        summary["players_skipped"] += skipped_players
        for row in rows:
            by_class_spec[f"{row['class_name']}-{row['spec_name']}"] += 1
        actx.heartbeat({"reports_done": index + 1, "reports_total": len(report_keys)})

    summary["builds_by_class_spec"] = dict(by_class_spec)
    logger.info("report_batch_extracted", batch_id=batch_id, **{
        k: v for k, v in summary.items() if k != "builds_by_class_spec"
    })
    return summary
