"""InfraGraph wrapper around networkx for the infrastructure graph."""

from typing import Any, Iterator

import networkx as nx

from ..schema.models import GraphEdge, GraphNode
from ..schema.types import RelationshipType


class InfraGraph:
    """An in-process view of stored nodes and edges.

    Wraps a networkx MultiDiGraph keyed by node id; parallel edges with
    different relationship types between the same pair are kept apart by
    edge id.
    """

    def __init__(self):
        """Initialize an empty graph."""
        self._graph = nx.MultiDiGraph()
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[str, GraphEdge] = {}

    @property
    def graph(self) -> nx.MultiDiGraph:
        """Get the underlying networkx graph."""
        return self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def __contains__(self, node_id: object) -> bool:
        return self._graph.has_node(node_id)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def add_node(self, node: GraphNode) -> str:
        """Add a stored node.

        Args:
            node: The node to add.

        Returns:
            The node id.
        """
        self._nodes[node.id] = node
        self._graph.add_node(
            node.id,
            provider=node.provider.value,
            resource_type=node.resource_type.value,
            name=node.name,
            cost_monthly=node.cost_monthly,
        )
        return node.id

    def add_edge(self, edge: GraphEdge) -> bool:
        """Add an edge whose endpoints are both in the graph.

        Args:
            edge: The stored edge.

        Returns:
            False when an endpoint is missing and the edge was not added.
        """
        if not (
            self._graph.has_node(edge.source_node_id)
            and self._graph.has_node(edge.target_node_id)
        ):
            return False
        self._edges[edge.id] = edge
        self._graph.add_edge(
            edge.source_node_id,
            edge.target_node_id,
            key=edge.id,
            relationship_type=edge.relationship_type,
            confidence=edge.confidence,
        )
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> GraphEdge | None:
        return self._edges.get(edge_id)

    def nodes(self) -> list[GraphNode]:
        return list(self._nodes.values())

    def edges(self) -> list[GraphEdge]:
        return list(self._edges.values())

    def degree(self, node_id: str) -> tuple[int, int]:
        """(in-degree, out-degree) of a node."""
        return self._graph.in_degree(node_id), self._graph.out_degree(node_id)

    def iter_edges(
        self, edge_types: list[RelationshipType] | None = None
    ) -> Iterator[GraphEdge]:
        """Iterate over edges, optionally restricted to relationship types."""
        allowed = set(edge_types) if edge_types else None
        for _, _, edge_id, data in self._graph.edges(keys=True, data=True):
            if allowed is None or data["relationship_type"] in allowed:
                yield self._edges[edge_id]

    def undirected(self, edge_types: list[RelationshipType] | None = None) -> nx.Graph:
        """Simple undirected projection, optionally filtered by relationship type."""
        view = nx.Graph()
        view.add_nodes_from(self._graph.nodes)
        for edge in self.iter_edges(edge_types):
            view.add_edge(edge.source_node_id, edge.target_node_id, edge_id=edge.id)
        return view

    def node_attrs(self, node_id: str) -> dict[str, Any] | None:
        if self._graph.has_node(node_id):
            return dict(self._graph.nodes[node_id])
        return None
