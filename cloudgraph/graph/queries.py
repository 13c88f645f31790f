"""Graph algorithms for infrastructure analysis.

- Shortest path between two resources
- Orphan detection (resources with no relationships)
- Critical nodes (high degree and downstream reach)
- Single points of failure (articulation points)
- Connectivity clusters
"""

from dataclasses import dataclass, field
from typing import Iterable

import networkx as nx

from ..schema.models import GraphEdge, GraphNode
from ..schema.types import RelationshipType
from .infra_graph import InfraGraph


@dataclass
class PathResult:
    path: list[str] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    found: bool = False

    @property
    def hops(self) -> int:
        return max(len(self.path) - 1, 0)


@dataclass
class CriticalNode:
    node: GraphNode
    in_degree: int
    out_degree: int
    reachability_ratio: float

    @property
    def degree(self) -> int:
        return self.in_degree + self.out_degree

    @property
    def score(self) -> float:
        return self.degree * self.reachability_ratio


@dataclass
class ClusterResult:
    clusters: list[list[str]] = field(default_factory=list)
    isolated_nodes: list[str] = field(default_factory=list)

    @property
    def total_clusters(self) -> int:
        return len(self.clusters) + len(self.isolated_nodes)


def shortest_path(
    graph: InfraGraph,
    from_id: str,
    to_id: str,
    edge_types: list[RelationshipType] | None = None,
) -> PathResult:
    """Shortest path treating every relationship as undirected.

    Args:
        graph: The graph to search.
        from_id: Start node id.
        to_id: Destination node id.
        edge_types: Only traverse these relationship types.

    Returns:
        PathResult; `found` is False when either node is missing or no path exists.
    """
    if from_id == to_id and from_id in graph:
        return PathResult(path=[from_id], found=True)

    view = graph.undirected(edge_types)
    try:
        path = nx.shortest_path(view, from_id, to_id)
    except (nx.NetworkXNoPath, nx.NodeNotFound):
        return PathResult()

    edges = [graph.get_edge(view[u][v]["edge_id"]) for u, v in zip(path, path[1:])]
    return PathResult(path=path, edges=edges, found=True)


def find_orphans(graph: InfraGraph) -> list[GraphNode]:
    """Nodes with no edges in either direction."""
    return [
        node
        for node in sorted(graph.nodes(), key=lambda n: n.id)
        if graph.graph.degree(node.id) == 0
    ]


def find_critical_nodes(graph: InfraGraph, top_n: int = 20) -> list[CriticalNode]:
    """Rank connected nodes by degree times downstream reachability.

    Reachability is the fraction of all nodes reachable by following edges
    downstream, the node itself included.
    """
    total = len(graph)
    if total == 0:
        return []

    results = []
    for node in graph.nodes():
        in_degree, out_degree = graph.degree(node.id)
        if in_degree + out_degree == 0:
            continue
        reachable = len(nx.descendants(graph.graph, node.id)) + 1
        results.append(
            CriticalNode(
                node=node,
                in_degree=in_degree,
                out_degree=out_degree,
                reachability_ratio=reachable / total,
            )
        )

    results.sort(key=lambda c: (-c.score, c.node.id))
    return results[:top_n]


def find_single_points_of_failure(graph: InfraGraph) -> list[GraphNode]:
    """Articulation points of the undirected graph."""
    if len(graph) < 3:
        return []
    points = sorted(nx.articulation_points(graph.undirected()))
    return [graph.get_node(node_id) for node_id in points]


def find_clusters(graph: InfraGraph) -> ClusterResult:
    """Connected components, largest first; edgeless nodes are listed separately."""
    view = graph.undirected()
    result = ClusterResult()
    for component in nx.connected_components(view):
        members = sorted(component)
        if len(members) == 1 and view.degree(members[0]) == 0:
            result.isolated_nodes.append(members[0])
        else:
            result.clusters.append(members)
    result.clusters.sort(key=lambda members: (-len(members), members[0]))
    result.isolated_nodes.sort()
    return result


def hop_distances(root_id: str, node_ids: Iterable[str], edges: Iterable[GraphEdge]) -> dict[int, list[str]]:
    """Group nodes by undirected hop distance from `root_id`.

    Nodes not connected to the root through `edges` are left out.
    """
    view = nx.Graph()
    view.add_nodes_from(node_ids)
    view.add_node(root_id)
    for edge in edges:
        if view.has_node(edge.source_node_id) and view.has_node(edge.target_node_id):
            view.add_edge(edge.source_node_id, edge.target_node_id)

    hops: dict[int, list[str]] = {}
    lengths = nx.single_source_shortest_path_length(view, root_id)
    for node_id, distance in sorted(lengths.items(), key=lambda item: (item[1], item[0])):
        hops.setdefault(distance, []).append(node_id)
    return hops
