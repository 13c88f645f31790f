"""Builder for loading stored nodes and edges into an InfraGraph."""

from typing import Iterable

from ..schema.models import GraphEdge, GraphNode, NodeFilter
from ..storage.base import GraphStorage
from .infra_graph import InfraGraph


def build_graph(storage: GraphStorage, filter: NodeFilter | None = None) -> InfraGraph:
    """Build an InfraGraph from storage.

    Args:
        storage: The graph storage to read.
        filter: Restrict the nodes loaded; edges are kept only when both
            endpoints pass the filter.

    Returns:
        An InfraGraph of the selected nodes.
    """
    return graph_from(storage.query_nodes(filter), storage.query_edges())


def graph_from(nodes: Iterable[GraphNode], edges: Iterable[GraphEdge]) -> InfraGraph:
    """Build an InfraGraph from already loaded records."""
    graph = InfraGraph()

    # Nodes first so edges can check their endpoints
    for node in nodes:
        graph.add_node(node)

    for edge in edges:
        graph.add_edge(edge)

    return graph
