"""Sync orchestration, drift detection, cost attribution and retention."""

from .changes import field_changes, node_changes
from .engine import GraphEngine, SyncWave, build_cost_attribution
from .retention import DeleteAfter, KeepForever, RetentionPolicy, build_retention_policy

__all__ = [
    "field_changes",
    "node_changes",
    "GraphEngine",
    "SyncWave",
    "build_cost_attribution",
    "DeleteAfter",
    "KeepForever",
    "RetentionPolicy",
    "build_retention_policy",
]
