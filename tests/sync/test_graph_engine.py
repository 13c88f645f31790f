"""Tests for the sync orchestrator and the analysis queries built on it."""

import pytest

from cloudgraph.adapters.base import AdapterError, DiscoverOptions, DiscoveryError
from cloudgraph.adapters.inventory import InventoryAdapter
from cloudgraph.adapters.registry import AdapterRegistry
from cloudgraph.config.models import EngineConfig, RetentionConfig
from cloudgraph.inference.summary import get_cross_cloud_summary
from cloudgraph.schema.models import ChangeFilter, GraphGroup, NodeFilter
from cloudgraph.schema.types import (
    ChangeType,
    DetectionMethod,
    NodeStatus,
    ResourceType,
    SyncStatus,
    TraversalDirection,
)
from cloudgraph.sync.engine import GraphEngine, build_cost_attribution


@pytest.fixture
def make_engine(storage):
    def _make(*adapters, **config):
        return GraphEngine(storage, AdapterRegistry(list(adapters)), EngineConfig(**config))

    return _make


def _change_types(storage, **filter_fields):
    return [c.change_type for c in storage.get_changes(ChangeFilter(**filter_fields))]


class TestSyncCycle:
    def test_first_sync(self, storage, make_engine, static_adapter, make_node, make_edge):
        vm, disk = make_node("vm", status="running"), make_node("disk", resource_type="storage")
        adapter = static_adapter("aws", [vm, disk], [make_edge(vm.id, disk.id, "attached-to")])

        wave = make_engine(adapter).sync()

        assert wave.status == SyncStatus.COMPLETED
        record = wave.records[0]
        assert record.provider == "aws"
        assert record.id.startswith("sync-aws-")
        assert record.nodes_discovered == 2
        assert record.nodes_created == 2
        assert record.edges_created == 1
        assert record.completed_at is not None
        assert sorted(_change_types(storage, correlation_id=record.id)) == sorted(
            [ChangeType.NODE_CREATED, ChangeType.NODE_CREATED, ChangeType.EDGE_CREATED]
        )
        assert storage.get_last_sync_record("aws").status == SyncStatus.COMPLETED

    def test_rerun_is_idempotent(self, storage, clock, make_engine, static_adapter, make_node, make_edge):
        vm, disk = make_node("vm"), make_node("disk", resource_type="storage")
        engine = make_engine(static_adapter("aws", [vm, disk], [make_edge(vm.id, disk.id)]))
        engine.sync()
        changes_before = len(storage.get_changes())

        clock.advance(60)
        wave = engine.sync()

        record = wave.records[0]
        assert (record.nodes_created, record.nodes_updated, record.edges_created) == (0, 0, 0)
        assert record.changes_recorded == 0
        assert len(storage.query_edges()) == 1
        assert len(storage.get_changes()) == changes_before

    def test_field_and_cost_changes(self, storage, clock, make_engine, static_adapter, make_node):
        adapter = static_adapter("aws", [make_node("vm", tags={"env": "dev"}, cost_monthly=10)])
        engine = make_engine(adapter)
        engine.sync()

        clock.advance(60)
        adapter.nodes = [make_node("vm", tags={"env": "prod"}, cost_monthly=12.5)]
        record = engine.sync().records[0]

        assert record.nodes_updated == 1
        changes = storage.get_changes(ChangeFilter(correlation_id=record.id))
        by_field = {c.field: c for c in changes}
        assert by_field["tags"].change_type == ChangeType.NODE_UPDATED
        assert by_field["tags"].new_value == '{"env": "prod"}'
        assert by_field["cost_monthly"].change_type == ChangeType.COST_CHANGED
        assert by_field["cost_monthly"].previous_value == "10.0"

    def test_disappearance(self, storage, clock, make_engine, static_adapter, make_node):
        a, b = make_node("a"), make_node("b")
        adapter = static_adapter("aws", [a, b])
        engine = make_engine(adapter)
        engine.sync()

        clock.advance(60)
        adapter.nodes = [a]
        record = engine.sync().records[0]

        assert record.nodes_disappeared == 1
        assert storage.get_node(b.id).status == NodeStatus.DISAPPEARED
        assert storage.get_node(a.id).status != NodeStatus.DISAPPEARED
        assert _change_types(storage, target_id=b.id)[-1] == ChangeType.NODE_DISAPPEARED

    def test_sweep_scoped_to_provider(self, storage, clock, make_engine, static_adapter, make_node):
        aws = static_adapter("aws", [make_node("a")])
        gcp = static_adapter("gcp", [make_node("g", provider="gcp")])
        engine = make_engine(aws, gcp)
        engine.sync()

        clock.advance(60)
        engine.sync(["aws"])

        gcp_node = storage.get_node(make_node("g", provider="gcp").id)
        assert gcp_node.status != NodeStatus.DISAPPEARED

    def test_filtered_discovery_skips_sweep(self, storage, clock, make_engine, static_adapter, make_node):
        vm, bucket = make_node("vm"), make_node("bucket", resource_type="storage")
        engine = make_engine(static_adapter("aws", [vm, bucket]))
        engine.sync()

        clock.advance(60)
        engine.sync(discover_options=DiscoverOptions(resource_types=[ResourceType.COMPUTE]))

        assert storage.get_node(bucket.id).status != NodeStatus.DISAPPEARED

    def test_dangling_adapter_edges_dropped(self, storage, make_engine, static_adapter, make_node, make_edge):
        vm = make_node("vm")
        adapter = static_adapter("aws", [vm], [make_edge(vm.id, "aws:acct:us-east-1:vpc:ghost")])

        record = make_engine(adapter).sync().records[0]

        assert record.status == SyncStatus.COMPLETED
        assert record.edges_discovered == 1
        assert record.edges_created == 0

    def test_edges_to_previously_stored_nodes_kept(
        self, storage, make_engine, static_adapter, make_node, make_edge
    ):
        vpc = make_node("vpc", provider="gcp", resource_type="vpc")
        vm = make_node("vm")
        gcp = static_adapter("gcp", [vpc])
        aws = static_adapter("aws", [vm], [make_edge(vm.id, vpc.id, "connected-to")])
        make_engine(gcp).sync()

        record = make_engine(aws).sync().records[0]

        assert record.edges_created == 1


class TestSyncStatus:
    def test_partial_errors(self, make_engine, static_adapter, make_node):
        adapter = static_adapter(
            "aws", [make_node("vm")], errors=[DiscoveryError("throttled", "storage", "us-east-1")]
        )
        wave = make_engine(adapter).sync()

        record = wave.records[0]
        assert record.status == SyncStatus.PARTIAL
        assert record.nodes_created == 1
        assert record.errors == ["[storage@us-east-1] throttled"]
        assert wave.status == SyncStatus.PARTIAL

    def test_partial_can_skip_sweep(self, storage, clock, make_engine, static_adapter, make_node):
        a, b = make_node("a"), make_node("b")
        adapter = static_adapter("aws", [a, b])
        engine = make_engine(adapter, mark_disappeared_on_partial=False)
        engine.sync()

        clock.advance(60)
        adapter.nodes = [a]
        adapter.errors = [DiscoveryError("listing b failed")]
        record = engine.sync().records[0]

        assert record.status == SyncStatus.PARTIAL
        assert record.nodes_disappeared == 0
        assert storage.get_node(b.id).status != NodeStatus.DISAPPEARED

    def test_adapter_failure(self, storage, make_engine, static_adapter):
        adapter = static_adapter("aws", fail=AdapterError("credentials expired", "aws"))
        wave = make_engine(adapter).sync()

        assert wave.status == SyncStatus.FAILED
        assert wave.records[0].status == SyncStatus.FAILED
        assert wave.records[0].errors == ["credentials expired"]
        assert wave.inference is None
        assert storage.get_last_sync_record("aws").status == SyncStatus.FAILED

    def test_unexpected_adapter_exception_fails_cycle(self, make_engine, static_adapter):
        adapter = static_adapter("aws", fail=RuntimeError("bug"))
        assert make_engine(adapter).sync().records[0].status == SyncStatus.FAILED

    def test_one_failure_does_not_block_others(self, storage, make_engine, static_adapter, make_node):
        bad = static_adapter("aws", fail=AdapterError("down"))
        good = static_adapter("gcp", [make_node("g", provider="gcp")])

        wave = make_engine(bad, good).sync()

        assert [r.status for r in wave.records] == [SyncStatus.FAILED, SyncStatus.COMPLETED]
        assert wave.status == SyncStatus.FAILED
        assert wave.inference is not None
        assert len(storage.query_nodes()) == 1

    def test_selected_providers(self, make_engine, static_adapter):
        aws, gcp = static_adapter("aws"), static_adapter("gcp")
        wave = make_engine(aws, gcp).sync(["gcp", "azure"])

        assert [r.provider for r in wave.records] == ["gcp"]
        assert (aws.calls, gcp.calls) == (0, 1)

    def test_no_adapters(self, make_engine):
        wave = make_engine().sync()
        assert wave.records == []
        assert wave.status == SyncStatus.COMPLETED


class TestRetentionAndPruning:
    def test_retention_deletes_old_disappeared_nodes(
        self, storage, clock, make_engine, static_adapter, make_node, make_edge
    ):
        a, b = make_node("a"), make_node("b")
        edge = make_edge(a.id, b.id)
        adapter = static_adapter("aws", [a, b], [edge])
        engine = make_engine(
            adapter, retention=RetentionConfig(policy="delete-after", delete_after_days=1)
        )
        engine.sync()

        clock.advance(60)
        adapter.nodes = [a]
        adapter.edges = []
        assert engine.sync().records[0].nodes_deleted == 0

        clock.advance(2 * 24 * 3600)
        record = engine.sync().records[0]

        assert record.nodes_deleted == 1
        assert storage.get_node(b.id) is None
        assert _change_types(storage, target_id=b.id)[-1] == ChangeType.NODE_DELETED

        assert storage.get_edges_for_node(a.id) == []
        removed = storage.get_changes(
            ChangeFilter(target_id=f"edge:{edge.id}", change_type=ChangeType.EDGE_DELETED)
        )
        assert len(removed) == 1
        assert removed[0].correlation_id == record.id
        assert removed[0].metadata["reason"] == "retention"

    def test_stale_edges_pruned(self, storage, clock, make_engine, static_adapter, make_node, make_edge):
        a, b = make_node("a"), make_node("b")
        adapter = static_adapter("aws", [a, b], [make_edge(a.id, b.id)])
        engine = make_engine(adapter, edge_stale_after_seconds=60)
        engine.sync()

        clock.advance(120)
        adapter.edges = []
        wave = engine.sync()

        assert wave.edges_removed == 1
        assert storage.query_edges() == []
        deleted = storage.get_changes(ChangeFilter(change_type=[ChangeType.EDGE_DELETED]))
        assert deleted[0].metadata["reason"] == "stale"
        assert deleted[0].correlation_id == wave.id

    def test_pruning_disabled(self, storage, clock, make_engine, static_adapter, make_node, make_edge):
        a, b = make_node("a"), make_node("b")
        adapter = static_adapter("aws", [a, b], [make_edge(a.id, b.id)])
        engine = make_engine(adapter, edge_stale_after_seconds=60, prune_stale_edges=False)
        engine.sync()

        clock.advance(120)
        adapter.edges = []
        assert engine.sync().edges_removed == 0
        assert len(storage.query_edges()) == 1


class TestExampleWave:
    @pytest.fixture
    def engine(self, storage, inventory_dir):
        adapters = [InventoryAdapter(inventory_dir / name) for name in ("aws.yaml", "azure.yaml", "gcp.yaml")]
        return GraphEngine(storage, AdapterRegistry(adapters), EngineConfig(max_workers=3))

    def test_full_wave(self, storage, engine):
        wave = engine.sync()

        assert wave.status == SyncStatus.COMPLETED
        assert [r.provider for r in wave.records] == ["aws", "azure", "gcp"]
        assert len(storage.query_nodes()) == 14
        assert wave.edges_inferred == 11
        assert wave.edges_created == 10
        assert len(storage.query_edges()) == 11

        summary = get_cross_cloud_summary(storage)
        assert summary.total_cross_cloud_edges == 7
        assert summary.by_provider_pair == {"aws<->azure": 1, "aws<->gcp": 6}
        assert summary.ai_workload_connections == 3

    def test_second_wave_adds_nothing(self, storage, clock, engine):
        engine.sync()
        edges = len(storage.query_edges())
        changes = len(storage.get_changes())

        clock.advance(3600)
        wave = engine.sync()

        assert wave.edges_created == 0
        assert len(storage.query_edges()) == edges
        assert len(storage.get_changes()) == changes
        assert all(r.nodes_disappeared == 0 for r in wave.records)

    def test_sync_provider(self, storage, engine, inventory_dir):
        record = engine.sync_provider(InventoryAdapter(inventory_dir / "aws.yaml"))

        assert record.status == SyncStatus.COMPLETED
        assert record.nodes_created == 8
        # one api-field edge plus three more structural ones
        assert record.edges_created == 4
        assert storage.get_last_sync_record("aws").edges_created == 4


class TestDriftDetection:
    @pytest.fixture
    def synced(self, storage, make_engine, static_adapter, make_node):
        adapter = static_adapter(
            "aws", [make_node("a", status="running"), make_node("b", status="running")]
        )
        engine = make_engine(adapter)
        engine.sync()
        return engine, adapter

    def test_reports_drift_without_merging(self, storage, synced, make_node):
        engine, adapter = synced
        adapter.nodes = [make_node("a", status="stopped"), make_node("c")]

        result = engine.detect_drift()

        assert [d.node.id for d in result.drifted_nodes] == [make_node("a").id]
        change = result.drifted_nodes[0].changes[0]
        assert change.change_type == ChangeType.NODE_DRIFTED
        assert change.detected_via == DetectionMethod.DRIFT_SCAN
        assert change.correlation_id.startswith("drift-")
        assert [n.id for n in result.new_nodes] == [make_node("c").id]
        assert [n.id for n in result.disappeared_nodes] == [make_node("b").id]
        assert storage.get_node(make_node("a").id).status == NodeStatus.RUNNING
        assert storage.get_node(make_node("c").id) is None
        assert ChangeType.NODE_DRIFTED not in _change_types(storage)

    def test_record_appends_changes(self, storage, synced, make_node):
        engine, adapter = synced
        adapter.nodes = [make_node("a", status="stopped"), make_node("b", status="running")]

        engine.detect_drift("aws", record=True)

        assert _change_types(storage, detected_via=DetectionMethod.DRIFT_SCAN) == [
            ChangeType.NODE_DRIFTED
        ]

    def test_errors_suppress_disappeared(self, synced, make_node):
        engine, adapter = synced
        adapter.nodes = [make_node("a", status="running")]
        adapter.errors = [DiscoveryError("partial listing")]

        result = engine.detect_drift()

        assert result.disappeared_nodes == []
        assert result.errors == ["partial listing"]

    def test_failed_discovery_reported(self, synced):
        engine, adapter = synced
        adapter.fail = AdapterError("no credentials")
        result = engine.detect_drift()
        assert result.errors == ["aws: no credentials"]


class TestBlastRadius:
    @pytest.fixture
    def chain(self, storage, make_node, make_edge):
        nodes = [
            make_node("lb", resource_type="load-balancer", cost_monthly=20),
            make_node("app", cost_monthly=100),
            make_node("db", resource_type="database", cost_monthly=300),
            make_node("lonely"),
        ]
        storage.upsert_nodes(nodes)
        lb, app, db, _ = (n.id for n in nodes)
        storage.upsert_edges([make_edge(lb, app, "routes-to"), make_edge(app, db, "depends-on")])
        return lb, app, db

    def test_hops_and_cost(self, storage, chain):
        lb, app, db = chain
        result = GraphEngine(storage).get_blast_radius(app, depth=1)

        assert result.hops == {0: [app], 1: sorted([lb, db])}
        assert result.total_cost_monthly == 420
        assert len(result.edges) == 2
        assert not result.truncated

    def test_depth_limits(self, storage, chain):
        lb, app, db = chain
        result = GraphEngine(storage).get_blast_radius(lb, depth=1)
        assert set(result.nodes) == {lb, app}
        assert GraphEngine(storage).get_blast_radius(lb, depth=2).hops[2] == [db]

    def test_dependency_chain_direction(self, storage, chain):
        lb, app, db = chain
        engine = GraphEngine(storage)
        downstream = engine.get_dependency_chain(app, TraversalDirection.DOWNSTREAM)
        upstream = engine.get_dependency_chain(app, TraversalDirection.UPSTREAM)
        assert set(downstream.nodes) == {app, db}
        assert set(upstream.nodes) == {app, lb}

    def test_missing_root(self, storage):
        result = GraphEngine(storage).get_blast_radius("aws:x:y:compute:nope")
        assert result.nodes == {}
        assert result.hops == {}


class TestCostAndTopology:
    def test_node_cost_with_downstream(self, storage, make_node, make_edge):
        app, db = make_node("app", cost_monthly=100), make_node("db", resource_type="database", cost_monthly=300)
        storage.upsert_nodes([app, db])
        storage.upsert_edge(make_edge(app.id, db.id))
        engine = GraphEngine(storage)

        assert engine.get_node_cost(app.id).total_monthly == 100
        rolled = engine.get_node_cost(app.id, include_downstream=True)
        assert rolled.total_monthly == 400
        assert [entry.node_id for entry in rolled.nodes] == [db.id, app.id]
        assert rolled.by_resource_type == {"compute": 100, "database": 300}

    def test_group_cost_written_back(self, storage, make_node):
        a, b = make_node("a", cost_monthly=5), make_node("b")
        storage.upsert_nodes([a, b])
        storage.upsert_group(GraphGroup(id="team", name="Team", group_type="team"))
        storage.add_group_member("team", a.id)
        storage.add_group_member("team", b.id)

        attribution = GraphEngine(storage).get_group_cost("team")

        assert attribution.label == "Team"
        assert attribution.total_monthly == 5
        assert len(attribution.nodes) == 1
        assert storage.get_group("team").cost_monthly == 5

    def test_cost_by_filter(self, storage, make_node):
        storage.upsert_nodes(
            [make_node("a", cost_monthly=5), make_node("g", provider="gcp", cost_monthly=7)]
        )
        attribution = GraphEngine(storage).get_cost_by_filter(NodeFilter(provider="gcp"), "gcp")
        assert attribution.by_provider == {"gcp": 7}

    def test_unknown_cost_counts_as_zero(self, make_stored):
        attribution = build_cost_attribution("x", [make_stored("a"), make_stored("b", cost_monthly=0)])
        assert attribution.total_monthly == 0
        assert attribution.nodes == []

    def test_topology_keeps_internal_edges(self, storage, make_node, make_edge):
        a, b = make_node("a"), make_node("b")
        g = make_node("g", provider="gcp")
        storage.upsert_nodes([a, b, g])
        storage.upsert_edges([make_edge(a.id, b.id), make_edge(a.id, g.id)])

        nodes, edges = GraphEngine(storage).get_topology(NodeFilter(provider="aws"))

        assert [n.id for n in nodes] == sorted([a.id, b.id])
        assert [(e.source_node_id, e.target_node_id) for e in edges] == [(a.id, b.id)]

    def test_timeline(self, storage, make_engine, static_adapter, make_node):
        vm = make_node("vm")
        engine = make_engine(static_adapter("aws", [vm]))
        engine.sync()
        assert [c.change_type for c in engine.get_timeline(vm.id)] == [ChangeType.NODE_CREATED]

    def test_stats_passthrough(self, storage, make_node):
        storage.upsert_node(make_node("a"))
        assert GraphEngine(storage).get_stats().total_nodes == 1
