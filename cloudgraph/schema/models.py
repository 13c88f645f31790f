"""Pydantic models for the infrastructure knowledge graph."""

import fnmatch
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .clock import ensure_aware, utc_now
from .ids import build_edge_id, build_node_id, canonical_pair, new_change_id
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
)


def _as_list(value: Any) -> Any:
    """Wrap a scalar filter value in a list, leaving lists and None alone."""
    if value is None or isinstance(value, (list, tuple, set, frozenset)):
        return list(value) if value is not None else None
    return [value]


def _aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


# -----------------------------------------------------------------------------
# Nodes
# -----------------------------------------------------------------------------


class GraphNodeInput(BaseModel):
    """A discovered resource as submitted by an adapter.

    Server-managed timestamps (discovered, updated, last seen) are omitted;
    storage assigns them. `id` is always derived from the identity fields; a
    supplied id must equal the derived one.
    """

    id: str = ""
    provider: CloudProvider
    resource_type: ResourceType
    native_id: str = Field(min_length=1)
    name: str = ""
    region: str = ""
    account: str = ""
    status: NodeStatus = NodeStatus.UNKNOWN
    tags: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    cost_monthly: float | None = None
    owner: str | None = None
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_input(cls, data: Any) -> Any:
        """Coerce tag values to strings and default the name."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        tags = data.get("tags")
        if isinstance(tags, dict):
            data["tags"] = {
                str(key): str(value) for key, value in tags.items() if value is not None
            }
        elif tags is None:
            data["tags"] = {}

        if data.get("metadata") is None:
            data["metadata"] = {}

        if not data.get("name") and data.get("native_id"):
            data["name"] = str(data["native_id"])

        return data

    @model_validator(mode="after")
    def assign_id(self) -> "GraphNodeInput":
        """Derive the deterministic id from the identity fields."""
        expected = build_node_id(
            self.provider,
            self.account,
            self.region,
            self.resource_type,
            self.native_id,
        )
        if self.id and self.id != expected:
            raise ValueError(
                f"Node id '{self.id}' does not match its identity fields, "
                f"expected '{expected}'"
            )
        self.id = expected
        return self

    @field_validator("created_at", mode="after")
    @classmethod
    def _created_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class GraphNode(GraphNodeInput):
    """A stored resource node with its lifecycle timestamps."""

    discovered_at: datetime
    updated_at: datetime
    last_seen_at: datetime

    @field_validator("discovered_at", "updated_at", "last_seen_at", mode="after")
    @classmethod
    def _timestamps_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @classmethod
    def from_input(cls, node: GraphNodeInput, now: datetime) -> "GraphNode":
        """Materialize a first-seen input."""
        return cls(
            **node.model_dump(),
            discovered_at=now,
            updated_at=now,
            last_seen_at=now,
        )

    def to_input(self) -> GraphNodeInput:
        """Strip the server-managed timestamps."""
        return GraphNodeInput(
            **self.model_dump(exclude={"discovered_at", "updated_at", "last_seen_at"})
        )


# -----------------------------------------------------------------------------
# Edges
# -----------------------------------------------------------------------------


class GraphEdgeInput(BaseModel):
    """A directed relationship as submitted by an adapter or the inference engine.

    The id is always derived from the (source, target, relationship) triple;
    symmetric relationships are canonicalized so both orderings collapse to
    the same edge.
    """

    id: str = ""
    source_node_id: str = Field(min_length=1)
    target_node_id: str = Field(min_length=1)
    relationship_type: RelationshipType
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    discovered_via: DiscoveryMethod = DiscoveryMethod.CONFIG_SCAN
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def canonicalize(self) -> "GraphEdgeInput":
        """Order symmetric pairs and derive the dedup id."""
        source, target = canonical_pair(
            self.source_node_id, self.target_node_id, self.relationship_type
        )
        self.source_node_id = source
        self.target_node_id = target
        self.id = build_edge_id(source, target, self.relationship_type)
        return self

    @property
    def key(self) -> tuple[str, str, RelationshipType]:
        """The dedup triple."""
        return (self.source_node_id, self.target_node_id, self.relationship_type)


class GraphEdge(GraphEdgeInput):
    """A stored edge."""

    created_at: datetime
    last_seen_at: datetime

    @field_validator("created_at", "last_seen_at", mode="after")
    @classmethod
    def _timestamps_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @classmethod
    def from_input(cls, edge: GraphEdgeInput, now: datetime) -> "GraphEdge":
        return cls(**edge.model_dump(), created_at=now, last_seen_at=now)


# -----------------------------------------------------------------------------
# Change ledger
# -----------------------------------------------------------------------------


class GraphChange(BaseModel):
    """An immutable ledger entry.

    `target_id` is a node id, or `edge:<edgeId>` for edge changes.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_change_id)
    target_id: str
    change_type: ChangeType
    field: str | None = None
    previous_value: str | None = None
    new_value: str | None = None
    detected_at: datetime = Field(default_factory=utc_now)
    detected_via: DetectionMethod = DetectionMethod.SYNC
    correlation_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("previous_value", "new_value", mode="before")
    @classmethod
    def _serialize(cls, value: Any) -> str | None:
        """Store diff values as JSON text; plain strings are kept verbatim."""
        return serialize_value(value)

    @field_validator("detected_at", mode="after")
    @classmethod
    def _detected_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


def json_shape(value: Any) -> Any:
    """Round-trip a value through JSON, turning every map key into a string."""
    return json.loads(json.dumps(value, default=str))


def serialize_value(value: Any) -> str | None:
    """JSON-serialize a field value for the change ledger."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, str):
        return value
    return json.dumps(json_shape(value), sort_keys=True)


def edge_target_id(edge_id: str) -> str:
    """Ledger target id for an edge."""
    return f"edge:{edge_id}"


# -----------------------------------------------------------------------------
# Groups
# -----------------------------------------------------------------------------


class GraphGroup(BaseModel):
    """A logical grouping of nodes (application, team, environment, ...)."""

    id: str
    name: str
    group_type: GroupType
    provider: CloudProvider | None = None
    description: str = ""
    owner: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    cost_monthly: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _timestamps_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class GraphGroupMember(BaseModel):
    """Junction record between a group and a node."""

    group_id: str
    node_id: str
    added_at: datetime


# -----------------------------------------------------------------------------
# Sync records
# -----------------------------------------------------------------------------


class SyncRecord(BaseModel):
    """One discovery cycle for one provider."""

    id: str = Field(default_factory=lambda: f"sync-{new_change_id()}")
    provider: str
    status: SyncStatus = SyncStatus.PENDING
    started_at: datetime
    completed_at: datetime | None = None
    nodes_discovered: int = 0
    nodes_created: int = 0
    nodes_updated: int = 0
    nodes_disappeared: int = 0
    nodes_deleted: int = 0
    edges_discovered: int = 0
    edges_created: int = 0
    edges_removed: int = 0
    changes_recorded: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: int | None = None

    @field_validator("started_at", "completed_at", mode="after")
    @classmethod
    def _timestamps_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


# -----------------------------------------------------------------------------
# Filters
# -----------------------------------------------------------------------------


class NodeFilter(BaseModel):
    """Node query filter. Every set field is ANDed."""

    provider: CloudProvider | None = None
    resource_type: list[ResourceType] | None = None
    region: str | None = None
    account: str | None = None
    status: list[NodeStatus] | None = None
    tags: dict[str, str] | None = None
    name_pattern: str | None = None
    owner: str | None = None
    min_cost: float | None = None
    max_cost: float | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_sets(cls, data: Any) -> Any:
        """Accept a scalar wherever a set of values is allowed."""
        if isinstance(data, dict):
            for key in ("resource_type", "status"):
                if key in data:
                    data[key] = _as_list(data[key])
        return data

    def matches(self, node: GraphNode) -> bool:
        """Check a node against every set field."""
        if self.provider is not None and node.provider != self.provider:
            return False
        if self.resource_type and node.resource_type not in self.resource_type:
            return False
        if self.region is not None and node.region != self.region:
            return False
        if self.account is not None and node.account != self.account:
            return False
        if self.status and node.status not in self.status:
            return False
        if self.owner is not None and node.owner != self.owner:
            return False
        if self.tags:
            for key, value in self.tags.items():
                if node.tags.get(key) != value:
                    return False
        if self.name_pattern and not _name_matches(node.name, self.name_pattern):
            return False
        cost = node.cost_monthly or 0.0
        if self.min_cost is not None and cost < self.min_cost:
            return False
        if self.max_cost is not None and cost > self.max_cost:
            return False
        return True


def _name_matches(name: str, pattern: str) -> bool:
    """Substring match, or glob match when the pattern has wildcards.

    `%` is accepted as a SQL-style alias for `*`.
    """
    lowered = name.lower()
    needle = pattern.lower().replace("%", "*")
    if any(ch in needle for ch in "*?["):
        return fnmatch.fnmatchcase(lowered, needle)
    return needle in lowered


class EdgeFilter(BaseModel):
    """Edge query filter."""

    source_node_id: str | None = None
    target_node_id: str | None = None
    relationship_type: list[RelationshipType] | None = None
    min_confidence: float | None = None
    discovered_via: DiscoveryMethod | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_sets(cls, data: Any) -> Any:
        if isinstance(data, dict) and "relationship_type" in data:
            data["relationship_type"] = _as_list(data["relationship_type"])
        return data

    def matches(self, edge: GraphEdge) -> bool:
        if self.source_node_id is not None and edge.source_node_id != self.source_node_id:
            return False
        if self.target_node_id is not None and edge.target_node_id != self.target_node_id:
            return False
        if self.relationship_type and edge.relationship_type not in self.relationship_type:
            return False
        if self.min_confidence is not None and edge.confidence < self.min_confidence:
            return False
        if self.discovered_via is not None and edge.discovered_via != self.discovered_via:
            return False
        return True


class ChangeFilter(BaseModel):
    """Change ledger query filter."""

    target_id: str | None = None
    change_type: list[ChangeType] | None = None
    since: datetime | None = None
    until: datetime | None = None
    detected_via: DetectionMethod | None = None
    correlation_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_sets(cls, data: Any) -> Any:
        if isinstance(data, dict) and "change_type" in data:
            data["change_type"] = _as_list(data["change_type"])
        return data

    @field_validator("since", "until", mode="after")
    @classmethod
    def _bounds_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    def matches(self, change: GraphChange) -> bool:
        if self.target_id is not None and change.target_id != self.target_id:
            return False
        if self.change_type and change.change_type not in self.change_type:
            return False
        if self.since is not None and change.detected_at < self.since:
            return False
        if self.until is not None and change.detected_at > self.until:
            return False
        if self.detected_via is not None and change.detected_via != self.detected_via:
            return False
        if self.correlation_id is not None and change.correlation_id != self.correlation_id:
            return False
        return True


# -----------------------------------------------------------------------------
# Query results
# -----------------------------------------------------------------------------


class GraphStats(BaseModel):
    """Aggregate counts computed from current state."""

    total_nodes: int = 0
    total_edges: int = 0
    total_changes: int = 0
    total_groups: int = 0
    nodes_by_provider: dict[str, int] = Field(default_factory=dict)
    nodes_by_resource_type: dict[str, int] = Field(default_factory=dict)
    edges_by_relationship_type: dict[str, int] = Field(default_factory=dict)
    total_cost_monthly: float = 0.0
    last_sync_at: datetime | None = None
    oldest_change: datetime | None = None
    newest_change: datetime | None = None


class NeighborResult(BaseModel):
    """Nodes visited by a bounded expansion and the edges connecting them."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    truncated: bool = False


class SubgraphResult(BaseModel):
    """Blast-radius or dependency-chain result."""

    root_node_id: str
    nodes: dict[str, GraphNode] = Field(default_factory=dict)
    edges: list[GraphEdge] = Field(default_factory=list)
    hops: dict[int, list[str]] = Field(default_factory=dict)
    total_cost_monthly: float = 0.0
    truncated: bool = False


class DriftedNode(BaseModel):
    """A stored node whose observed state differs from the graph."""

    node: GraphNode
    changes: list[GraphChange]


class DriftResult(BaseModel):
    """Outcome of a drift scan."""

    drifted_nodes: list[DriftedNode] = Field(default_factory=list)
    disappeared_nodes: list[GraphNode] = Field(default_factory=list)
    new_nodes: list[GraphNodeInput] = Field(default_factory=list)
    scanned_at: datetime = Field(default_factory=utc_now)
    errors: list[str] = Field(default_factory=list)


class CostEntry(BaseModel):
    node_id: str
    name: str
    resource_type: ResourceType
    cost_monthly: float


class CostAttribution(BaseModel):
    """Cost rolled up over a node, group or filter."""

    label: str
    total_monthly: float = 0.0
    by_resource_type: dict[str, float] = Field(default_factory=dict)
    by_provider: dict[str, float] = Field(default_factory=dict)
    nodes: list[CostEntry] = Field(default_factory=list)
