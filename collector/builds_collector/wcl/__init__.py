"""Warcraft Logs API client."""

from .client import RankingsFetch, WarcraftLogsClient, raise_if_exhausted
from .queries import talent_code_alias

__all__ = ["RankingsFetch", "WarcraftLogsClient", "raise_if_exhausted", "talent_code_alias"]
