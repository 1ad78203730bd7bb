"""Parsers turning Warcraft Logs responses into typed models.

Every function raises :class:`ParseError` when the payload does not have the
expected shape; callers never see KeyError or TypeError from here.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from ..errors import ParseError
from ..models import RankingEntry, RateLimitSnapshot, ReportDetail


def _dig(payload: Any, *path: str) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, dict) or key not in current:
            raise ParseError(f"Missing field {'.'.join(path)} in response")
        current = current[key]
    return current


def parse_rankings_response(
    payload: dict[str, Any],
    encounter_id: int,
    class_name: str,
    spec_name: str,
) -> tuple[list[RankingEntry], bool]:
    """Return the rankings of one page and whether more pages exist."""
    rankings_doc = _dig(payload, "worldData", "encounter", "characterRankings")
    if not isinstance(rankings_doc, dict):
        raise ParseError("characterRankings is not an object")
    raw_rankings = rankings_doc.get("rankings") or []
    if not isinstance(raw_rankings, list):
        raise ParseError("characterRankings.rankings is not a list")

    entries: list[RankingEntry] = []
    for raw in raw_rankings:
        report = raw.get("report") or {}
        server = raw.get("server") or {}
        guild = raw.get("guild") or {}
        try:
            entries.append(
                RankingEntry(
                    player_name=raw["name"],
                    class_name=raw.get("class") or class_name,
                    spec_name=raw.get("spec") or spec_name,
                    encounter_id=encounter_id,
                    report_code=report["code"],
                    report_fight_id=report["fightID"],
                    report_start_time=report.get("startTime"),
                    server_id=server.get("id"),
                    server_name=server.get("name"),
                    server_region=server.get("region"),
                    guild_id=guild.get("id"),
                    guild_name=guild.get("name"),
                    faction=raw.get("faction", guild.get("faction")),
                    amount=raw.get("amount") or 0.0,
                    score=raw.get("score") or 0.0,
                    hard_mode_level=raw.get("hardModeLevel") or 0,
                    duration=raw.get("duration") or 0,
                    start_time=raw.get("startTime"),
                    medal=raw.get("medal"),
                    affixes=raw.get("affixes") or [],
                )
            )
        except (KeyError, AttributeError, ValidationError) as exc:
            raise ParseError(f"Malformed ranking entry: {exc}") from exc
    return entries, bool(rankings_doc.get("hasMorePages"))


def parse_report_response(payload: dict[str, Any], code: str, fight_id: int) -> ReportDetail:
    report = _dig(payload, "reportData", "report")
    fights = report.get("fights") if isinstance(report, dict) else None
    if not fights:
        raise ParseError(f"Report {code} has no fight {fight_id}")
    fight = fights[0]

    details_doc = report.get("playerDetails") or {}
    # playerDetails is returned as {"data": {"playerDetails": {...}}}
    details = _dig(details_doc, "data", "playerDetails") if details_doc else {}

    start = fight.get("startTime") or 0
    end = fight.get("endTime") or 0
    try:
        return ReportDetail(
            code=code,
            fight_id=fight_id,
            encounter_id=fight.get("encounterID") or 0,
            total_time=max(end - start, 0),
            item_level=fight.get("averageItemLevel") or 0.0,
            keystone_level=fight.get("keystoneLevel") or 0,
            keystone_time=fight.get("keystoneTime") or 0,
            affixes=fight.get("keystoneAffixes") or [],
            player_details_dps=details.get("dps") or [],
            player_details_healers=details.get("healers") or [],
            player_details_tanks=details.get("tanks") or [],
        )
    except (AttributeError, ValidationError) as exc:
        raise ParseError(f"Malformed report {code}: {exc}") from exc


def parse_talents_response(payload: dict[str, Any]) -> dict[str, str]:
    fights = _dig(payload, "reportData", "report", "fights")
    if not isinstance(fights, list) or not fights:
        raise ParseError("Talent response has no fight")
    return {alias: code for alias, code in fights[0].items() if isinstance(code, str) and code}


def parse_rate_limit(payload: dict[str, Any]) -> RateLimitSnapshot:
    data = _dig(payload, "rateLimitData")
    try:
        return RateLimitSnapshot(
            limit_per_hour=data["limitPerHour"],
            points_spent_this_hour=data["pointsSpentThisHour"],
            points_reset_in=data["pointsResetIn"],
        )
    except (KeyError, TypeError, ValidationError) as exc:
        raise ParseError(f"Malformed rate limit data: {exc}") from exc
