"""Persistence helpers for checkpoints, collected data and aggregates."""

from .workflow_states import WorkflowStateStore, compute_progress

__all__ = ["WorkflowStateStore", "compute_progress"]
