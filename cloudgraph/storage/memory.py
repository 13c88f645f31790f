"""In-memory graph storage, used by tests and one-shot CLI runs."""

import threading
from collections import Counter
from datetime import datetime
from typing import Iterable

from ..schema.clock import Clock, next_after
from ..schema.models import (
    ChangeFilter,
    EdgeFilter,
    GraphChange,
    GraphEdge,
    GraphEdgeInput,
    GraphGroup,
    GraphGroupMember,
    GraphNode,
    GraphNodeInput,
    GraphStats,
    NodeFilter,
    SyncRecord,
)
from ..schema.types import GroupType, NodeStatus, RelationshipType, TraversalDirection
from .base import (
    EdgeUpsertResult,
    GraphStorage,
    NodeUpsertResult,
    disappearance_candidates,
    merge_edge,
    merge_node,
)
from .errors import GroupNotFoundError, NodeNotFoundError


class InMemoryGraphStorage(GraphStorage):
    """Dict-backed storage guarded by a single re-entrant lock."""

    def __init__(self, clock: Clock | None = None):
        super().__init__(clock)
        self._lock = threading.RLock()
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[str, GraphEdge] = {}
        self._edges_by_node: dict[str, set[str]] = {}
        self._changes: list[GraphChange] = []
        self._groups: dict[str, GraphGroup] = {}
        self._members: dict[str, dict[str, GraphGroupMember]] = {}
        self._sync_records: dict[str, SyncRecord] = {}

    # -- nodes -----------------------------------------------------------------

    def upsert_nodes(self, nodes: Iterable[GraphNodeInput]) -> list[NodeUpsertResult]:
        results = []
        with self._lock:
            for node in nodes:
                result = merge_node(self._nodes.get(node.id), node, self.now())
                self._nodes[result.node_id] = result.current
                results.append(result)
        return results

    def get_node(self, node_id: str) -> GraphNode | None:
        with self._lock:
            return self._nodes.get(node_id)

    def get_node_by_native_id(self, provider: str, native_id: str) -> GraphNode | None:
        with self._lock:
            for node in self._nodes.values():
                if node.provider == provider and node.native_id == native_id:
                    return node
        return None

    def query_nodes(self, filter: NodeFilter | None = None) -> list[GraphNode]:
        with self._lock:
            nodes = list(self._nodes.values())
        if filter is not None:
            nodes = [node for node in nodes if filter.matches(node)]
        return sorted(nodes, key=lambda node: node.id)

    def delete_node(self, node_id: str) -> bool:
        with self._lock:
            if self._nodes.pop(node_id, None) is None:
                return False
            for edge_id in list(self._edges_by_node.get(node_id, ())):
                self._drop_edge(edge_id)
            self._edges_by_node.pop(node_id, None)
            for members in self._members.values():
                members.pop(node_id, None)
            return True

    def mark_nodes_disappeared(
        self, older_than: datetime, provider: str | None = None
    ) -> list[str]:
        with self._lock:
            now = self.now()
            affected = []
            for node in disappearance_candidates(
                self._nodes.values(), older_than, provider
            ):
                self._nodes[node.id] = node.model_copy(
                    update={
                        "status": NodeStatus.DISAPPEARED,
                        "updated_at": next_after(now, node.updated_at),
                    }
                )
                affected.append(node.id)
            return sorted(affected)

    # -- edges -----------------------------------------------------------------

    def upsert_edges(self, edges: Iterable[GraphEdgeInput]) -> list[EdgeUpsertResult]:
        edges = list(edges)
        results = []
        with self._lock:
            for edge in edges:
                for endpoint in (edge.source_node_id, edge.target_node_id):
                    if endpoint not in self._nodes:
                        raise NodeNotFoundError(
                            endpoint, f"Edge {edge.id} references missing node {endpoint}"
                        )
            for edge in edges:
                result = merge_edge(self._edges.get(edge.id), edge, self.now())
                self._edges[result.edge_id] = result.edge
                self._edges_by_node.setdefault(edge.source_node_id, set()).add(edge.id)
                self._edges_by_node.setdefault(edge.target_node_id, set()).add(edge.id)
                results.append(result)
        return results

    def get_edge(self, edge_id: str) -> GraphEdge | None:
        with self._lock:
            return self._edges.get(edge_id)

    def get_edges_for_node(
        self,
        node_id: str,
        direction: TraversalDirection = TraversalDirection.BOTH,
        relationship_type: RelationshipType | None = None,
    ) -> list[GraphEdge]:
        direction = TraversalDirection(direction)
        with self._lock:
            edges = [self._edges[edge_id] for edge_id in self._edges_by_node.get(node_id, ())]
        selected = []
        for edge in edges:
            if relationship_type is not None and edge.relationship_type != relationship_type:
                continue
            if direction == TraversalDirection.DOWNSTREAM and edge.source_node_id != node_id:
                continue
            if direction == TraversalDirection.UPSTREAM and edge.target_node_id != node_id:
                continue
            selected.append(edge)
        return sorted(selected, key=lambda edge: edge.id)

    def query_edges(self, filter: EdgeFilter | None = None) -> list[GraphEdge]:
        with self._lock:
            edges = list(self._edges.values())
        if filter is not None:
            edges = [edge for edge in edges if filter.matches(edge)]
        return sorted(edges, key=lambda edge: edge.id)

    def delete_edge(self, edge_id: str) -> bool:
        with self._lock:
            return self._drop_edge(edge_id) is not None

    def remove_stale_edges(self, older_than: datetime) -> list[GraphEdge]:
        with self._lock:
            stale = [
                edge_id
                for edge_id, edge in self._edges.items()
                if edge.last_seen_at < older_than
            ]
            return [self._drop_edge(edge_id) for edge_id in sorted(stale)]

    def _drop_edge(self, edge_id: str) -> GraphEdge | None:
        edge = self._edges.pop(edge_id, None)
        if edge is not None:
            for endpoint in (edge.source_node_id, edge.target_node_id):
                self._edges_by_node.get(endpoint, set()).discard(edge_id)
        return edge

    # -- change ledger ---------------------------------------------------------

    def append_changes(self, changes: Iterable[GraphChange]) -> None:
        with self._lock:
            self._changes.extend(changes)

    def get_changes(self, filter: ChangeFilter | None = None) -> list[GraphChange]:
        with self._lock:
            changes = list(self._changes)
        if filter is None:
            return changes
        return [change for change in changes if filter.matches(change)]

    def get_node_timeline(self, node_id: str, limit: int = 50) -> list[GraphChange]:
        timeline = self.get_changes(ChangeFilter(target_id=node_id))
        return timeline[-limit:] if limit > 0 else []

    # -- stats -----------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        with self._lock:
            nodes = list(self._nodes.values())
            edges = list(self._edges.values())
            changes = list(self._changes)
            total_groups = len(self._groups)
            records = list(self._sync_records.values())

        detected = [change.detected_at for change in changes]
        finished = [r.completed_at for r in records if r.completed_at is not None]
        return GraphStats(
            total_nodes=len(nodes),
            total_edges=len(edges),
            total_changes=len(changes),
            total_groups=total_groups,
            nodes_by_provider=dict(Counter(node.provider.value for node in nodes)),
            nodes_by_resource_type=dict(Counter(node.resource_type.value for node in nodes)),
            edges_by_relationship_type=dict(
                Counter(edge.relationship_type.value for edge in edges)
            ),
            total_cost_monthly=sum(node.cost_monthly or 0.0 for node in nodes),
            last_sync_at=max(finished) if finished else None,
            oldest_change=min(detected) if detected else None,
            newest_change=max(detected) if detected else None,
        )

    # -- groups ----------------------------------------------------------------

    def upsert_group(self, group: GraphGroup) -> GraphGroup:
        with self._lock:
            now = self.now()
            existing = self._groups.get(group.id)
            stored = group.model_copy(
                update={
                    "created_at": existing.created_at if existing else (group.created_at or now),
                    "updated_at": now,
                }
            )
            self._groups[group.id] = stored
            self._members.setdefault(group.id, {})
            return stored

    def get_group(self, group_id: str) -> GraphGroup | None:
        with self._lock:
            return self._groups.get(group_id)

    def list_groups(self, group_type: GroupType | None = None) -> list[GraphGroup]:
        with self._lock:
            groups = list(self._groups.values())
        if group_type is not None:
            groups = [group for group in groups if group.group_type == group_type]
        return sorted(groups, key=lambda group: group.id)

    def delete_group(self, group_id: str) -> bool:
        with self._lock:
            self._members.pop(group_id, None)
            return self._groups.pop(group_id, None) is not None

    def add_group_member(self, group_id: str, node_id: str) -> None:
        with self._lock:
            if group_id not in self._groups:
                raise GroupNotFoundError(group_id)
            if node_id not in self._nodes:
                raise NodeNotFoundError(node_id)
            members = self._members.setdefault(group_id, {})
            if node_id not in members:
                members[node_id] = GraphGroupMember(
                    group_id=group_id, node_id=node_id, added_at=self.now()
                )

    def remove_group_member(self, group_id: str, node_id: str) -> bool:
        with self._lock:
            return self._members.get(group_id, {}).pop(node_id, None) is not None

    def get_group_members(self, group_id: str) -> list[GraphNode]:
        with self._lock:
            ids = list(self._members.get(group_id, {}))
            return sorted(
                (self._nodes[node_id] for node_id in ids if node_id in self._nodes),
                key=lambda node: node.id,
            )

    def get_node_groups(self, node_id: str) -> list[GraphGroup]:
        with self._lock:
            return sorted(
                (
                    self._groups[group_id]
                    for group_id, members in self._members.items()
                    if node_id in members and group_id in self._groups
                ),
                key=lambda group: group.id,
            )

    # -- sync records ----------------------------------------------------------

    def save_sync_record(self, record: SyncRecord) -> None:
        with self._lock:
            self._sync_records[record.id] = record

    def get_last_sync_record(self, provider: str | None = None) -> SyncRecord | None:
        records = self.list_sync_records()
        for record in records:
            if provider is None or record.provider == provider:
                return record
        return None

    def list_sync_records(self, limit: int | None = None) -> list[SyncRecord]:
        with self._lock:
            records = list(self._sync_records.values())
        # Stable for equal start times: later saves of new ids win.
        ordered = sorted(
            enumerate(records), key=lambda item: (item[1].started_at, item[0]), reverse=True
        )
        records = [record for _, record in ordered]
        return records[:limit] if limit is not None else records
