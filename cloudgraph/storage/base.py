"""The storage contract every graph backend implements."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from ..schema.clock import Clock, next_after, utc_now
from ..schema.diff import diff_node
from ..schema.models import (
    ChangeFilter,
    EdgeFilter,
    GraphChange,
    GraphEdge,
    GraphEdgeInput,
    GraphGroup,
    GraphNode,
    GraphNodeInput,
    GraphStats,
    NeighborResult,
    NodeFilter,
    SyncRecord,
)
from ..schema.types import (
    GroupType,
    NodeStatus,
    RelationshipType,
    TraversalDirection,
    UpsertOutcome,
)
from .traversal import expand


@dataclass(frozen=True)
class NodeUpsertResult:
    """What a node upsert did, decided atomically with the write."""

    node_id: str
    outcome: UpsertOutcome
    previous: GraphNode | None
    current: GraphNode

    @property
    def created(self) -> bool:
        return self.outcome == UpsertOutcome.CREATED

    @property
    def updated(self) -> bool:
        return self.outcome == UpsertOutcome.UPDATED


@dataclass(frozen=True)
class EdgeUpsertResult:
    """What an edge upsert did."""

    edge_id: str
    created: bool
    edge: GraphEdge


def merge_node(
    existing: GraphNode | None, incoming: GraphNodeInput, now: datetime
) -> NodeUpsertResult:
    """Compute the stored state after observing `incoming`.

    Scalars are overwritten and the tag/metadata maps are replaced wholesale.
    `updated_at` moves only when a field differs; `last_seen_at` always moves
    and strictly increases.
    """
    if existing is None:
        node = GraphNode.from_input(incoming, now)
        return NodeUpsertResult(node.id, UpsertOutcome.CREATED, None, node)

    changed = bool(diff_node(existing, incoming))
    data = incoming.model_dump()
    if data["created_at"] is None:
        data["created_at"] = existing.created_at
    node = GraphNode(
        **data,
        discovered_at=existing.discovered_at,
        updated_at=next_after(now, existing.updated_at) if changed else existing.updated_at,
        last_seen_at=next_after(now, existing.last_seen_at),
    )
    outcome = UpsertOutcome.UPDATED if changed else UpsertOutcome.UNCHANGED
    return NodeUpsertResult(node.id, outcome, existing, node)


def merge_edge(
    existing: GraphEdge | None, incoming: GraphEdgeInput, now: datetime
) -> EdgeUpsertResult:
    """Compute the stored edge after re-discovery.

    Confidence only moves up: a corroborating re-discovery may raise it, a
    weaker one never lowers it. `created_at` is preserved.
    """
    if existing is None:
        edge = GraphEdge.from_input(incoming, now)
        return EdgeUpsertResult(edge.id, True, edge)

    stronger = incoming.confidence > existing.confidence
    edge = existing.model_copy(
        update={
            "confidence": incoming.confidence if stronger else existing.confidence,
            "discovered_via": incoming.discovered_via if stronger else existing.discovered_via,
            "metadata": dict(incoming.metadata) or dict(existing.metadata),
            "last_seen_at": next_after(now, existing.last_seen_at),
        }
    )
    return EdgeUpsertResult(edge.id, False, edge)


class GraphStorage(ABC):
    """Persistent store for nodes, edges, the change ledger, groups and sync records.

    Implementations must be safe to call from several threads at once. The
    created/updated/unchanged decision for a node upsert is made under the
    same lock as the write.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or utc_now

    def now(self) -> datetime:
        """Current time from the injected clock."""
        return self._clock()

    # -- lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        """Prepare the backend (create tables, ...). Safe to call twice."""

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "GraphStorage":
        self.initialize()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- nodes -----------------------------------------------------------------

    @abstractmethod
    def upsert_nodes(self, nodes: Iterable[GraphNodeInput]) -> list[NodeUpsertResult]:
        """Insert or merge nodes by id, as one unit of work."""

    def upsert_node(self, node: GraphNodeInput) -> NodeUpsertResult:
        return self.upsert_nodes([node])[0]

    @abstractmethod
    def get_node(self, node_id: str) -> GraphNode | None: ...

    @abstractmethod
    def get_node_by_native_id(self, provider: str, native_id: str) -> GraphNode | None: ...

    @abstractmethod
    def query_nodes(self, filter: NodeFilter | None = None) -> list[GraphNode]:
        """Return nodes matching every set field of `filter`, ordered by id."""

    @abstractmethod
    def delete_node(self, node_id: str) -> bool:
        """Hard-delete a node with its edges and group memberships."""

    @abstractmethod
    def mark_nodes_disappeared(
        self, older_than: datetime, provider: str | None = None
    ) -> list[str]:
        """Mark nodes last seen before `older_than` as disappeared.

        Nodes already marked are left alone.

        Returns:
            Ids of the nodes transitioned by this call.
        """

    # -- edges -----------------------------------------------------------------

    @abstractmethod
    def upsert_edges(self, edges: Iterable[GraphEdgeInput]) -> list[EdgeUpsertResult]:
        """Insert or re-confirm edges by their dedup id, as one unit of work.

        Raises:
            NodeNotFoundError: If an endpoint is not stored; nothing is written.
        """

    def upsert_edge(self, edge: GraphEdgeInput) -> EdgeUpsertResult:
        return self.upsert_edges([edge])[0]

    @abstractmethod
    def get_edge(self, edge_id: str) -> GraphEdge | None: ...

    @abstractmethod
    def get_edges_for_node(
        self,
        node_id: str,
        direction: TraversalDirection = TraversalDirection.BOTH,
        relationship_type: RelationshipType | None = None,
    ) -> list[GraphEdge]:
        """Edges touching a node.

        Upstream returns edges where the node is the target, downstream edges
        where it is the source.
        """

    @abstractmethod
    def query_edges(self, filter: EdgeFilter | None = None) -> list[GraphEdge]: ...

    @abstractmethod
    def delete_edge(self, edge_id: str) -> bool: ...

    @abstractmethod
    def remove_stale_edges(self, older_than: datetime) -> list[GraphEdge]:
        """Delete edges last confirmed before `older_than` and return them."""

    def delete_stale_edges(self, older_than: datetime) -> int:
        """Delete edges not re-confirmed since `older_than`; returns the count."""
        return len(self.remove_stale_edges(older_than))

    # -- change ledger ---------------------------------------------------------

    @abstractmethod
    def append_changes(self, changes: Iterable[GraphChange]) -> None:
        """Append ledger entries. There is no update or delete counterpart."""

    def append_change(self, change: GraphChange) -> None:
        self.append_changes([change])

    @abstractmethod
    def get_changes(self, filter: ChangeFilter | None = None) -> list[GraphChange]:
        """Ledger entries in append order."""

    @abstractmethod
    def get_node_timeline(self, node_id: str, limit: int = 50) -> list[GraphChange]:
        """The most recent `limit` entries for a node, oldest first."""

    # -- traversal -------------------------------------------------------------

    def get_neighbors(
        self,
        node_id: str,
        depth: int,
        direction: TraversalDirection = TraversalDirection.BOTH,
        edge_types: list[RelationshipType] | None = None,
        max_nodes: int | None = None,
        deadline: float | None = None,
    ) -> NeighborResult:
        """Breadth-first expansion up to `depth` hops.

        Args:
            node_id: Root node; included in the result when stored.
            depth: Maximum hop count.
            direction: upstream, downstream or both.
            edge_types: Only follow these relationship types.
            max_nodes: Caller-supplied cap on visited nodes.
            deadline: `time.monotonic()` value after which expansion stops.

        Returns:
            Visited nodes and the edges connecting them. `truncated` is set
            when a limit stopped the expansion early.
        """
        expansion = expand(
            node_id,
            depth,
            direction,
            lambda current: self.get_edges_for_node(current, TraversalDirection.BOTH),
            edge_types=edge_types,
            max_nodes=max_nodes,
            deadline=deadline,
        )
        nodes = [
            node
            for node in (self.get_node(visited) for visited in expansion.hops)
            if node is not None
        ]
        return NeighborResult(
            nodes=nodes,
            edges=list(expansion.edges.values()),
            truncated=expansion.truncated,
        )

    # -- stats -----------------------------------------------------------------

    @abstractmethod
    def get_stats(self) -> GraphStats:
        """Aggregates computed from current state."""

    # -- groups ----------------------------------------------------------------

    @abstractmethod
    def upsert_group(self, group: GraphGroup) -> GraphGroup: ...

    @abstractmethod
    def get_group(self, group_id: str) -> GraphGroup | None: ...

    @abstractmethod
    def list_groups(self, group_type: GroupType | None = None) -> list[GraphGroup]: ...

    @abstractmethod
    def delete_group(self, group_id: str) -> bool: ...

    @abstractmethod
    def add_group_member(self, group_id: str, node_id: str) -> None:
        """Add a node to a group; adding an existing member is a no-op.

        Raises:
            GroupNotFoundError: If the group is not stored.
            NodeNotFoundError: If the node is not stored.
        """

    @abstractmethod
    def remove_group_member(self, group_id: str, node_id: str) -> bool: ...

    @abstractmethod
    def get_group_members(self, group_id: str) -> list[GraphNode]: ...

    @abstractmethod
    def get_node_groups(self, node_id: str) -> list[GraphGroup]: ...

    # -- sync records ----------------------------------------------------------

    @abstractmethod
    def save_sync_record(self, record: SyncRecord) -> None:
        """Insert or replace a sync record by id."""

    @abstractmethod
    def get_last_sync_record(self, provider: str | None = None) -> SyncRecord | None: ...

    @abstractmethod
    def list_sync_records(self, limit: int | None = None) -> list[SyncRecord]:
        """Sync records, most recently started first."""


def deadline_after(seconds: float | None) -> float | None:
    """Convert a relative timeout into a deadline for `get_neighbors`."""
    if seconds is None:
        return None
    return time.monotonic() + seconds


def disappearance_candidates(
    nodes: Iterable[GraphNode], older_than: datetime, provider: str | None
) -> list[GraphNode]:
    """Nodes a disappearance sweep would transition."""
    return [
        node
        for node in nodes
        if node.status != NodeStatus.DISAPPEARED
        and node.last_seen_at < older_than
        and (provider is None or node.provider.value == provider)
    ]
