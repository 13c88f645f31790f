"""Graph layer for analysing the infrastructure graph with networkx."""

from .builder import build_graph, graph_from
from .infra_graph import InfraGraph
from .queries import (
    ClusterResult,
    CriticalNode,
    PathResult,
    find_clusters,
    find_critical_nodes,
    find_orphans,
    find_single_points_of_failure,
    hop_distances,
    shortest_path,
)

__all__ = [
    "build_graph",
    "graph_from",
    "InfraGraph",
    "ClusterResult",
    "CriticalNode",
    "PathResult",
    "find_clusters",
    "find_critical_nodes",
    "find_orphans",
    "find_single_points_of_failure",
    "hop_distances",
    "shortest_path",
]
