"""Pipeline stages. Importing this package registers their workflows."""

from .base import PagedStage, PageOutcome
from .builds import BuildsStage, builds_batch_workflow, builds_workflow
from .rankings import RankingsStage, rankings_workflow
from .reports import ReportsStage, reports_workflow

__all__ = [
    "PagedStage",
    "PageOutcome",
    "RankingsStage",
    "ReportsStage",
    "BuildsStage",
    "rankings_workflow",
    "reports_workflow",
    "builds_workflow",
    "builds_batch_workflow",
]
