"""Relationship inference: cross-cloud rules and same-provider structural edges."""

from .engine import (
    InferenceResult,
    RelationshipInferenceEngine,
    discover_cross_cloud_relationships,
)
from .rules import InferenceRule, MatchContext, RuleMatch, default_rules
from .structural import infer_structural_edges
from .summary import CrossCloudSummary, get_cross_cloud_summary

__all__ = [
    "InferenceResult",
    "RelationshipInferenceEngine",
    "discover_cross_cloud_relationships",
    "InferenceRule",
    "MatchContext",
    "RuleMatch",
    "default_rules",
    "infer_structural_edges",
    "CrossCloudSummary",
    "get_cross_cloud_summary",
]
