"""
Warcraft Logs v2 GraphQL client.

Authenticates with OAuth client credentials, posts GraphQL documents over
httpx and maps every failure onto the pipeline error taxonomy so activities
never have to inspect HTTP details themselves.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Iterable, NamedTuple

import httpx

from ..config import WarcraftLogsConfig, settings
from ..errors import ApiError, ConfigurationError, ParseError, QuotaExceededError, RateLimitError
from ..logging import logger
from ..models import PlayerDetail, RankingEntry, RateLimitSnapshot, ReportDetail
from .parsing import (
    parse_rankings_response,
    parse_rate_limit,
    parse_report_response,
    parse_talents_response,
)
from .queries import (
    RANKINGS_QUERY,
    RATE_LIMIT_QUERY,
    REPORT_QUERY,
    build_talents_query,
    talent_code_alias,
)

USER_AGENT = "builds-collector/1.0"


def _truncate_body(text: str | None, limit: int = 500) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}…"


def _retry_after_seconds(response: httpx.Response, default: float) -> float:
    header = response.headers.get("Retry-After")
    if not header:
        return default
    try:
        return max(float(header), 0.0)
    except ValueError:
        return default


def raise_if_exhausted(snapshot: RateLimitSnapshot | None) -> None:
    """Raise QuotaExceededError when ``snapshot`` shows the hourly points spent.

    A snapshot without a known limit never raises.
    """
    if snapshot is not None and snapshot.limit_per_hour > 0 and snapshot.remaining_points < 1:
        raise QuotaExceededError(
            "Warcraft Logs hourly points exhausted",
            retry_after=snapshot.points_reset_in,
            remaining_points=snapshot.remaining_points,
            reset_in=snapshot.points_reset_in,
        )


class RankingsFetch(NamedTuple):
    entries: list[RankingEntry]
    # GraphQL queries spent, one per rankings page
    queries: int


class WarcraftLogsClient:
    """Thin GraphQL client over ``httpx.Client``.

    One instance is shared by the activity threads of a worker process; token
    refresh is serialised with a lock.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        config: WarcraftLogsConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or settings.warcraftlogs
        self.client_id = client_id if client_id is not None else settings.wcl_client_id
        self.client_secret = client_secret if client_secret is not None else settings.wcl_client_secret
        if not self.client_id or not self.client_secret:
            logger.warning("wcl_credentials_missing", message="WCL_CLIENT_ID/SECRET not configured")
        self.client = httpx.Client(
            headers={"User-Agent": USER_AGENT},
            timeout=self.config.request_timeout_seconds,
            transport=transport,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()
        self._last_snapshot: RateLimitSnapshot | None = None

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> WarcraftLogsClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _access_token(self) -> str:
        with self._token_lock:
            margin = self.config.token_refresh_margin_seconds
            if self._token and time.monotonic() < self._token_expires_at - margin:
                return self._token
            if not self.client_id or not self.client_secret:
                raise ConfigurationError("Warcraft Logs credentials are not configured")

            try:
                response = self.client.post(
                    self.config.token_url,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                )
            except httpx.HTTPError as exc:
                raise ApiError(f"Token request failed: {exc}", retryable=True) from exc

            if response.status_code in (400, 401, 403):
                raise ConfigurationError(
                    f"Warcraft Logs rejected the client credentials ({response.status_code})"
                )
            if response.status_code != 200:
                raise ApiError(
                    f"Token request returned {response.status_code}",
                    status_code=response.status_code,
                    retryable=response.status_code >= 500,
                )
            try:
                body = response.json()
                self._token = body["access_token"]
                expires_in = float(body.get("expires_in", 3600))
            except (ValueError, KeyError, TypeError) as exc:
                raise ParseError(f"Malformed token response: {exc}") from exc
            self._token_expires_at = time.monotonic() + expires_in
            logger.info("wcl_token_refreshed", expires_in=expires_in)
            return self._token

    def _check_quota(self) -> None:
        raise_if_exhausted(self._last_snapshot)

    def query(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Post a GraphQL document and return its ``data`` object."""
        token = self._access_token()
        try:
            response = self.client.post(
                self.config.api_url,
                json={"query": document, "variables": variables or {}},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise ApiError(f"Warcraft Logs request timed out: {exc}", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise ApiError(f"Warcraft Logs request failed: {exc}", retryable=True) from exc

        if response.status_code == 429:
            retry_after = _retry_after_seconds(response, self.config.default_retry_after_seconds)
            logger.warning("wcl_rate_limited", retry_after=retry_after)
            raise RateLimitError("Warcraft Logs rate limit hit", retry_after=retry_after)
        if response.status_code == 401:
            # Token revoked or expired early; the next attempt fetches a new one.
            with self._token_lock:
                self._token = None
            raise ApiError("Warcraft Logs rejected the access token", status_code=401, retryable=True)
        if response.status_code >= 500:
            logger.warning(
                "wcl_server_error",
                status=response.status_code,
                body=_truncate_body(response.text),
            )
            raise ApiError(
                f"Warcraft Logs returned {response.status_code}",
                status_code=response.status_code,
                retryable=True,
            )
        if response.status_code >= 400:
            logger.warning(
                "wcl_client_error",
                status=response.status_code,
                body=_truncate_body(response.text),
            )
            raise ApiError(
                f"Warcraft Logs returned {response.status_code}",
                status_code=response.status_code,
                retryable=False,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON from Warcraft Logs: {exc}") from exc
        if not isinstance(body, dict):
            raise ParseError("Unexpected Warcraft Logs response shape")
        if body.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in body["errors"])
            raise ApiError(f"GraphQL errors: {messages}", retryable=False)
        data = body.get("data")
        if not isinstance(data, dict):
            raise ParseError("Warcraft Logs response has no data")
        return data

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_rate_limit(self) -> RateLimitSnapshot:
        snapshot = parse_rate_limit(self.query(RATE_LIMIT_QUERY))
        self._last_snapshot = snapshot
        logger.debug(
            "wcl_rate_limit_snapshot",
            limit_per_hour=snapshot.limit_per_hour,
            spent=snapshot.points_spent_this_hour,
            reset_in=snapshot.points_reset_in,
        )
        return snapshot

    def fetch_rankings(
        self,
        class_name: str,
        spec_name: str,
        encounter_id: int,
        *,
        limit: int,
        max_pages: int = 2,
    ) -> RankingsFetch:
        """Fetch up to ``limit`` top rankings, following at most ``max_pages`` pages."""
        self._check_quota()
        entries: list[RankingEntry] = []
        seen: set[tuple[str, int, str]] = set()
        queries = 0
        for page in range(1, max_pages + 1):
            queries += 1
            data = self.query(
                RANKINGS_QUERY,
                {
                    "encounterId": encounter_id,
                    "className": class_name,
                    "specName": spec_name,
                    "page": page,
                },
            )
            page_entries, has_more = parse_rankings_response(data, encounter_id, class_name, spec_name)
            for entry in page_entries:
                if entry.identity in seen:
                    continue
                seen.add(entry.identity)
                entries.append(entry)
            if not has_more or len(entries) >= limit:
                break
        return RankingsFetch(entries[:limit], queries)

    def fetch_report(self, code: str, fight_id: int) -> ReportDetail:
        self._check_quota()
        data = self.query(REPORT_QUERY, {"code": code, "fightID": fight_id})
        return parse_report_response(data, code, fight_id)

    def fetch_talent_codes(
        self,
        code: str,
        fight_id: int,
        players: Iterable[PlayerDetail],
    ) -> dict[str, str]:
        """Fetch talent import codes keyed by ``{Class}_{Spec}_talents`` alias."""
        actors = [
            (player.type, player.spec_name, player.id)
            for player in players
            if player.id is not None and player.type and player.spec_name
        ]
        if not actors:
            return {}
        self._check_quota()
        data = self.query(build_talents_query(actors), {"code": code, "fightID": fight_id})
        return parse_talents_response(data)


__all__ = ["RankingsFetch", "WarcraftLogsClient", "raise_if_exhausted", "talent_code_alias"]
