"""GraphQL documents sent to the Warcraft Logs v2 client API."""

from __future__ import annotations

import re

RANKINGS_QUERY = """
query getClassRankings($encounterId: Int!, $className: String!, $specName: String!, $page: Int!) {
  worldData {
    encounter(id: $encounterId) {
      name
      characterRankings(
        className: $className
        specName: $specName
        metric: playerscore
        page: $page
      )
    }
  }
}
"""

REPORT_QUERY = """
query getReportDetails($code: String!, $fightID: Int!) {
  reportData {
    report(code: $code) {
      fights(fightIDs: [$fightID]) {
        id
        encounterID
        startTime
        endTime
        keystoneLevel
        keystoneTime
        keystoneAffixes
        averageItemLevel
      }
      playerDetails(fightIDs: [$fightID], includeCombatantInfo: true)
    }
  }
}
"""

RATE_LIMIT_QUERY = """
query getRateLimit {
  rateLimitData {
    limitPerHour
    pointsSpentThisHour
    pointsResetIn
  }
}
"""

_ALIAS_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def talent_code_alias(player_type: str, spec_name: str) -> str:
    """Alias under which a player's talent import code is returned."""
    return _ALIAS_UNSAFE.sub("", f"{player_type}_{spec_name}_talents")


def build_talents_query(actors: list[tuple[str, str, int]]) -> str:
    """Query fetching one talent import code per (type, spec, actor id)."""
    fields = "\n".join(
        f"        {talent_code_alias(player_type, spec)}: talentImportCode(actorID: {actor_id})"
        for player_type, spec, actor_id in actors
    )
    return (
        "query getTalentCodes($code: String!, $fightID: Int!) {\n"
        "  reportData {\n"
        "    report(code: $code) {\n"
        "      fights(fightIDs: [$fightID]) {\n"
        f"{fields}\n"
        "      }\n"
        "    }\n"
        "  }\n"
        "}\n"
    )
