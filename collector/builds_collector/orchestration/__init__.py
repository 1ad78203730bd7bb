"""
Workflow orchestration: substrate interface, runtimes, stages and coordinator.

Importing this package registers every workflow (``rankings``, ``reports``,
``builds``, ``builds_batch``, ``statistics`` and ``pipeline``).
"""

from .activities import ActivityContext, ActivityOptions, RetryPolicy, run_activity
from .cursor import BuildsBatchParams, ResumableCursor, StageParams
from .fanout import FanOutResult, fan_out
from .local import LocalRuntime
from .registry import get_workflow, registered_workflows, workflow
from .resources import WorkerResources, build_worker_resources, get_worker_resources
from .stages import BuildsStage, RankingsStage, ReportsStage
from .statistics import statistics_workflow
from .coordinator import PipelineCoordinator, PipelineParams, pipeline_workflow
from .substrate import (
    ChildHandle,
    ChildOptions,
    ChildResult,
    ContinueAsNew,
    ExecutionContext,
    continuation_id,
)

__all__ = [
    "ActivityContext",
    "ActivityOptions",
    "BuildsBatchParams",
    "BuildsStage",
    "ChildHandle",
    "ChildOptions",
    "ChildResult",
    "ContinueAsNew",
    "ExecutionContext",
    "FanOutResult",
    "LocalRuntime",
    "PipelineCoordinator",
    "PipelineParams",
    "RankingsStage",
    "ReportsStage",
    "ResumableCursor",
    "RetryPolicy",
    "StageParams",
    "WorkerResources",
    "build_worker_resources",
    "continuation_id",
    "fan_out",
    "get_worker_resources",
    "get_workflow",
    "pipeline_workflow",
    "registered_workflows",
    "run_activity",
    "statistics_workflow",
    "workflow",
]
