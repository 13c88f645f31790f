"""Breadth-first neighbor expansion shared by the storage backends."""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable

from ..schema.models import GraphEdge
from ..schema.types import RelationshipType, TraversalDirection


@dataclass
class Expansion:
    """Raw BFS output: hop distance per visited node and the connecting edges."""

    hops: dict[str, int] = field(default_factory=dict)
    edges: dict[str, GraphEdge] = field(default_factory=dict)
    truncated: bool = False


def neighbor_of(
    edge: GraphEdge, node_id: str, direction: TraversalDirection
) -> str | None:
    """Return the node reached from `node_id` over `edge`, or None.

    Downstream follows source -> target, upstream follows target -> source.
    Symmetric relationships are walkable from either endpoint.
    """
    direction = TraversalDirection(direction)
    symmetric = edge.relationship_type.is_symmetric
    if edge.source_node_id == node_id and (
        symmetric or direction != TraversalDirection.UPSTREAM
    ):
        return edge.target_node_id
    if edge.target_node_id == node_id and (
        symmetric or direction != TraversalDirection.DOWNSTREAM
    ):
        return edge.source_node_id
    return None


def expand(
    start_id: str,
    depth: int,
    direction: TraversalDirection,
    edges_for: Callable[[str], Iterable[GraphEdge]],
    edge_types: list[RelationshipType] | None = None,
    max_nodes: int | None = None,
    deadline: float | None = None,
) -> Expansion:
    """Breadth-first expansion from `start_id`.

    Each node is visited once, at its shallowest hop distance. Edges between
    visited nodes are collected even when they lead back to a node that was
    already seen.

    Args:
        start_id: Root node id (hop 0).
        depth: Maximum number of hops.
        direction: Which edge orientation to follow.
        edges_for: Returns every edge touching a node id.
        edge_types: Only follow these relationship types, if given.
        max_nodes: Stop once this many nodes have been visited.
        deadline: `time.monotonic()` value after which expansion stops.

    Returns:
        The Expansion; `truncated` is set when a limit cut it short.
    """
    allowed = set(edge_types) if edge_types else None
    result = Expansion(hops={start_id: 0})
    queue = deque([(start_id, 0)])

    while queue:
        if deadline is not None and time.monotonic() >= deadline:
            result.truncated = True
            break

        node_id, hop = queue.popleft()
        if hop >= depth:
            continue

        for edge in edges_for(node_id):
            if allowed is not None and edge.relationship_type not in allowed:
                continue
            neighbor = neighbor_of(edge, node_id, direction)
            if neighbor is None:
                continue
            if neighbor in result.hops:
                result.edges.setdefault(edge.id, edge)
                continue
            if max_nodes is not None and len(result.hops) >= max_nodes:
                result.truncated = True
                continue
            result.hops[neighbor] = hop + 1
            result.edges.setdefault(edge.id, edge)
            queue.append((neighbor, hop + 1))

    return result
