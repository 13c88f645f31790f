"""Schema layer: enumerations, identifiers and pydantic models for the graph."""

from .clock import Clock, utc_now
from .diff import FieldDiff, diff_node
from .errors import InvalidIdentifierError, SchemaError
from .ids import build_edge_id, build_node_id, canonical_pair
from .models import (
    ChangeFilter,
    CostAttribution,
    DriftResult,
    EdgeFilter,
    GraphChange,
    GraphEdge,
    GraphEdgeInput,
    GraphGroup,
    GraphNode,
    GraphNodeInput,
    GraphStats,
    NodeFilter,
    SubgraphResult,
    SyncRecord,
    edge_target_id,
)
from .types import (
    ChangeType,
    CloudProvider,
    DetectionMethod,
    DiscoveryMethod,
    GroupType,
    NodeStatus,
    RelationshipType,
    ResourceType,
    SyncStatus,
    TraversalDirection,
    UpsertOutcome,
)

__all__ = [
    "Clock",
    "utc_now",
    "FieldDiff",
    "diff_node",
    "InvalidIdentifierError",
    "SchemaError",
    "build_edge_id",
    "build_node_id",
    "canonical_pair",
    "ChangeFilter",
    "CostAttribution",
    "DriftResult",
    "EdgeFilter",
    "GraphChange",
    "GraphEdge",
    "GraphEdgeInput",
    "GraphGroup",
    "GraphNode",
    "GraphNodeInput",
    "GraphStats",
    "NodeFilter",
    "SubgraphResult",
    "SyncRecord",
    "edge_target_id",
    "ChangeType",
    "CloudProvider",
    "DetectionMethod",
    "DiscoveryMethod",
    "GroupType",
    "NodeStatus",
    "RelationshipType",
    "ResourceType",
    "SyncStatus",
    "TraversalDirection",
    "UpsertOutcome",
]
