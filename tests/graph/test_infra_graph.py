"""Tests for InfraGraph, the storage builder and graph queries."""

import pytest

from cloudgraph.graph.builder import build_graph, graph_from
from cloudgraph.graph.infra_graph import InfraGraph
from cloudgraph.graph.queries import (
    find_clusters,
    find_critical_nodes,
    find_orphans,
    find_single_points_of_failure,
    hop_distances,
    shortest_path,
)
from cloudgraph.schema.models import NodeFilter
from cloudgraph.schema.types import RelationshipType


@pytest.fixture
def stored(memory_storage, make_node, make_edge):
    """lb -> app -> db, app -> cache, plus an unconnected bucket and a gcp vm."""
    nodes = {
        name: make_node(name, resource_type=rtype)
        for name, rtype in [
            ("lb", "load-balancer"),
            ("app", "compute"),
            ("db", "database"),
            ("cache", "cache"),
            ("bucket", "storage"),
        ]
    }
    nodes["gvm"] = make_node("gvm", provider="gcp")
    memory_storage.upsert_nodes(nodes.values())
    ids = {name: node.id for name, node in nodes.items()}
    memory_storage.upsert_edges(
        [
            make_edge(ids["lb"], ids["app"], "routes-to"),
            make_edge(ids["app"], ids["db"], "depends-on"),
            make_edge(ids["app"], ids["cache"], "reads-from"),
            make_edge(ids["app"], ids["db"], "reads-from"),
        ]
    )
    return ids


@pytest.fixture
def graph(memory_storage, stored):
    return build_graph(memory_storage)


class TestInfraGraph:
    def test_nodes_and_parallel_edges(self, graph, stored):
        assert len(graph) == 6
        assert stored["app"] in graph
        assert "missing" not in graph
        assert len(graph.edges()) == 4
        assert graph.graph.number_of_edges(stored["app"], stored["db"]) == 2
        assert graph.degree(stored["app"]) == (1, 3)

    def test_node_attrs(self, graph, stored):
        attrs = graph.node_attrs(stored["db"])
        assert attrs["provider"] == "aws"
        assert attrs["resource_type"] == "database"
        assert graph.node_attrs("missing") is None

    def test_edge_with_missing_endpoint_rejected(self, memory_storage, stored):
        edge = memory_storage.query_edges()[0]
        graph = InfraGraph()
        graph.add_node(memory_storage.get_node(edge.source_node_id))
        assert graph.add_edge(edge) is False
        assert graph.get_edge(edge.id) is None

    def test_iter_edges_by_type(self, graph):
        reads = list(graph.iter_edges([RelationshipType.READS_FROM]))
        assert len(reads) == 2
        assert all(e.relationship_type == RelationshipType.READS_FROM for e in reads)

    def test_undirected_collapses_parallel_edges(self, graph, stored):
        view = graph.undirected()
        assert view.number_of_edges() == 3
        assert view.has_edge(stored["db"], stored["app"])


class TestBuilder:
    def test_filter_drops_edges_to_excluded_nodes(self, memory_storage, stored):
        graph = build_graph(memory_storage, NodeFilter(resource_type=["compute", "database"]))
        assert {n.id for n in graph.nodes()} == {stored["app"], stored["db"], stored["gvm"]}
        assert len(graph.edges()) == 2

    def test_graph_from_records(self, memory_storage, stored):
        graph = graph_from(memory_storage.query_nodes(), memory_storage.query_edges())
        assert len(graph) == 6
        assert len(graph.edges()) == 4


class TestShortestPath:
    def test_path_ignores_direction(self, graph, stored):
        result = shortest_path(graph, stored["db"], stored["lb"])
        assert result.found
        assert result.path == [stored["db"], stored["app"], stored["lb"]]
        assert result.hops == 2
        assert len(result.edges) == 2

    def test_edge_type_filter(self, graph, stored):
        result = shortest_path(graph, stored["lb"], stored["db"], [RelationshipType.DEPENDS_ON])
        assert not result.found
        assert result.path == []

    def test_same_node(self, graph, stored):
        result = shortest_path(graph, stored["app"], stored["app"])
        assert result.found and result.hops == 0

    def test_unknown_node(self, graph, stored):
        assert not shortest_path(graph, stored["app"], "nope").found
        assert not shortest_path(graph, stored["app"], stored["bucket"]).found


class TestAnalysis:
    def test_orphans(self, graph, stored):
        assert [n.id for n in find_orphans(graph)] == sorted([stored["bucket"], stored["gvm"]])

    def test_critical_nodes(self, graph, stored):
        critical = find_critical_nodes(graph)

        assert critical[0].node.id == stored["app"]
        assert critical[0].degree == 4
        assert critical[0].reachability_ratio == pytest.approx(3 / 6)
        assert stored["bucket"] not in {c.node.id for c in critical}
        assert len(find_critical_nodes(graph, top_n=2)) == 2

    def test_critical_nodes_empty_graph(self):
        assert find_critical_nodes(InfraGraph()) == []

    def test_single_points_of_failure(self, graph, stored):
        assert [n.id for n in find_single_points_of_failure(graph)] == [stored["app"]]

    def test_small_graph_has_no_spof(self, make_stored):
        graph = graph_from([make_stored("a"), make_stored("b")], [])
        assert find_single_points_of_failure(graph) == []

    def test_clusters(self, graph, stored):
        result = find_clusters(graph)
        assert result.clusters == [sorted([stored[k] for k in ("lb", "app", "db", "cache")])]
        assert result.isolated_nodes == sorted([stored["bucket"], stored["gvm"]])
        assert result.total_clusters == 3


class TestHopDistances:
    def test_grouped_by_distance(self, graph, stored):
        hops = hop_distances(stored["lb"], [n.id for n in graph.nodes()], graph.edges())
        assert hops[0] == [stored["lb"]]
        assert hops[1] == [stored["app"]]
        assert hops[2] == sorted([stored["cache"], stored["db"]])
        assert stored["bucket"] not in {node_id for ids in hops.values() for node_id in ids}

    def test_root_only(self):
        assert hop_distances("x", [], []) == {0: ["x"]}
