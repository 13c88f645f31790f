"""Behavior every storage backend shares, run against memory and SQLite."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from cloudgraph.schema.models import (
    ChangeFilter,
    EdgeFilter,
    GraphChange,
    GraphGroup,
    NodeFilter,
    SyncRecord,
)
from cloudgraph.schema.types import (
    ChangeType,
    GroupType,
    NodeStatus,
    RelationshipType,
    SyncStatus,
    TraversalDirection,
    UpsertOutcome,
)
from cloudgraph.storage.errors import GroupNotFoundError, NodeNotFoundError


def _ids(nodes):
    return [node.id for node in nodes]


class TestNodeUpsert:
    def test_create_then_unchanged(self, storage, clock, make_node):
        node = make_node("i-1", status="running", tags={"env": "prod"})

        first = storage.upsert_node(node)
        assert first.outcome == UpsertOutcome.CREATED
        assert first.previous is None

        clock.advance(60)
        second = storage.upsert_node(node)
        assert second.outcome == UpsertOutcome.UNCHANGED
        stored = storage.get_node(node.id)
        assert stored.updated_at == first.current.updated_at
        assert stored.last_seen_at > first.current.last_seen_at
        assert stored.discovered_at == first.current.discovered_at

    def test_update_replaces_maps(self, storage, clock, make_node):
        storage.upsert_node(make_node("i-1", tags={"a": "1", "b": "2"}))
        clock.advance()
        result = storage.upsert_node(make_node("i-1", tags={"a": "1"}))

        assert result.updated
        assert result.previous.tags == {"a": "1", "b": "2"}
        assert storage.get_node(result.node_id).tags == {"a": "1"}

    def test_last_seen_strictly_increases_on_same_tick(self, storage, make_node):
        node = make_node("i-1")
        first = storage.upsert_node(node).current
        second = storage.upsert_node(node).current
        assert second.last_seen_at > first.last_seen_at

    def test_created_at_kept_when_not_reported(self, storage, clock, make_node):
        created = clock() - timedelta(days=3)
        storage.upsert_node(make_node("i-1", created_at=created))
        clock.advance()
        result = storage.upsert_node(make_node("i-1"))
        assert result.outcome == UpsertOutcome.UNCHANGED
        assert storage.get_node(result.node_id).created_at == created

    def test_batch_results_in_order(self, storage, make_node):
        results = storage.upsert_nodes([make_node("b"), make_node("a")])
        assert [r.current.native_id for r in results] == ["b", "a"]
        assert all(r.created for r in results)

    def test_lookup_by_native_id(self, storage, make_node):
        storage.upsert_node(make_node("i-1", provider="gcp"))
        assert storage.get_node_by_native_id("gcp", "i-1") is not None
        assert storage.get_node_by_native_id("aws", "i-1") is None

    def test_missing_node(self, storage):
        assert storage.get_node("aws:x:y:compute:nope") is None

    @pytest.mark.parametrize(
        "ports", [{80: "http", 443: "https"}, {80: "http", "name": "x"}], ids=["int-keys", "mixed-keys"]
    )
    def test_non_string_metadata_keys_are_idempotent(self, storage, clock, make_node, ports):
        node = make_node("i-1", metadata={"ports": ports})
        assert storage.upsert_node(node).created

        clock.advance()
        assert storage.upsert_node(node).outcome == UpsertOutcome.UNCHANGED

        clock.advance()
        changed = make_node("i-1", metadata={"ports": {**ports, 8080: "alt"}})
        assert storage.upsert_node(changed).updated

    def test_concurrent_upserts_of_one_node(self, storage, make_node):
        node = make_node("i-1", tags={"env": "prod"})

        with ThreadPoolExecutor(max_workers=16) as executor:
            results = list(executor.map(lambda _: storage.upsert_node(node), range(16)))

        outcomes = [result.outcome for result in results]
        assert outcomes.count(UpsertOutcome.CREATED) == 1
        assert outcomes.count(UpsertOutcome.UPDATED) == 0
        assert len(storage.query_nodes()) == 1


class TestQueryNodes:
    @pytest.fixture
    def populated(self, storage, make_node):
        storage.upsert_nodes(
            [
                make_node("i-1", name="web-1", tags={"env": "prod"}, cost_monthly=50),
                make_node("i-2", name="web-2", tags={"env": "dev"}, cost_monthly=5),
                make_node("db", provider="azure", resource_type="database", owner="data"),
            ]
        )
        return storage

    def test_ordered_by_id(self, populated):
        ids = _ids(populated.query_nodes())
        assert ids == sorted(ids)
        assert len(ids) == 3

    def test_provider_and_type(self, populated):
        assert len(populated.query_nodes(NodeFilter(provider="aws"))) == 2
        assert len(populated.query_nodes(NodeFilter(resource_type=["database"]))) == 1

    def test_tags_name_and_cost(self, populated):
        assert len(populated.query_nodes(NodeFilter(tags={"env": "prod"}))) == 1
        assert len(populated.query_nodes(NodeFilter(name_pattern="web-*"))) == 2
        assert len(populated.query_nodes(NodeFilter(min_cost=10))) == 1

    def test_owner(self, populated):
        nodes = populated.query_nodes(NodeFilter(owner="data"))
        assert [n.native_id for n in nodes] == ["db"]


class TestDisappearance:
    def test_marks_only_nodes_not_seen(self, storage, clock, make_node):
        storage.upsert_nodes([make_node("old"), make_node("fresh")])
        clock.advance(10)
        cutoff = clock()
        storage.upsert_node(make_node("fresh"))

        marked = storage.mark_nodes_disappeared(cutoff)

        assert marked == [make_node("old").id]
        assert storage.get_node(make_node("old").id).status == NodeStatus.DISAPPEARED
        assert storage.get_node(make_node("fresh").id).status == NodeStatus.UNKNOWN

    def test_already_disappeared_left_alone(self, storage, clock, make_node):
        storage.upsert_node(make_node("old"))
        clock.advance(10)
        assert storage.mark_nodes_disappeared(clock()) != []
        first = storage.get_node(make_node("old").id)

        clock.advance(10)
        assert storage.mark_nodes_disappeared(clock()) == []
        assert storage.get_node(first.id).updated_at == first.updated_at

    def test_scoped_to_provider(self, storage, clock, make_node):
        storage.upsert_nodes([make_node("a"), make_node("g", provider="gcp")])
        clock.advance(10)
        assert storage.mark_nodes_disappeared(clock(), provider="gcp") == [
            make_node("g", provider="gcp").id
        ]

    def test_marking_bumps_updated_at(self, storage, clock, make_node):
        created = storage.upsert_node(make_node("old")).current
        clock.advance(10)
        storage.mark_nodes_disappeared(clock())
        assert storage.get_node(created.id).updated_at > created.updated_at

    def test_reappearing_node_is_updated(self, storage, clock, make_node):
        storage.upsert_node(make_node("old", status="running"))
        clock.advance(10)
        storage.mark_nodes_disappeared(clock())
        result = storage.upsert_node(make_node("old", status="running"))
        assert result.updated
        assert result.current.status == NodeStatus.RUNNING


class TestEdges:
    @pytest.fixture
    def pair(self, storage, make_node):
        a, b = make_node("a"), make_node("b")
        storage.upsert_nodes([a, b])
        return a.id, b.id

    def test_dangling_edge_rejected(self, storage, pair, make_edge):
        source, _ = pair
        with pytest.raises(NodeNotFoundError) as exc_info:
            storage.upsert_edges(
                [make_edge(source, pair[1]), make_edge(source, "aws:acct:x:compute:ghost")]
            )
        assert exc_info.value.node_id == "aws:acct:x:compute:ghost"
        assert storage.query_edges() == []

    def test_symmetric_edge_stored_once(self, storage, pair, make_edge):
        a, b = pair
        first = storage.upsert_edge(make_edge(b, a, "peers-with"))
        second = storage.upsert_edge(make_edge(a, b, "peers-with"))

        assert first.created
        assert not second.created
        assert first.edge_id == second.edge_id
        assert len(storage.query_edges()) == 1

    def test_confidence_only_rises(self, storage, clock, pair, make_edge):
        a, b = pair
        storage.upsert_edge(make_edge(a, b, confidence=0.5))
        clock.advance()
        storage.upsert_edge(make_edge(a, b, confidence=0.9))
        clock.advance()
        result = storage.upsert_edge(make_edge(a, b, confidence=0.3))

        assert result.edge.confidence == 0.9
        assert storage.get_edge(result.edge_id).confidence == 0.9

    def test_reconfirmation_preserves_created_at(self, storage, clock, pair, make_edge):
        a, b = pair
        created = storage.upsert_edge(make_edge(a, b)).edge
        clock.advance(30)
        again = storage.upsert_edge(make_edge(a, b)).edge
        assert again.created_at == created.created_at
        assert again.last_seen_at > created.last_seen_at

    def test_edges_for_node_by_direction(self, storage, pair, make_edge):
        a, b = pair
        storage.upsert_edges([make_edge(a, b, "uses"), make_edge(b, a, "depends-on")])

        downstream = storage.get_edges_for_node(a, TraversalDirection.DOWNSTREAM)
        upstream = storage.get_edges_for_node(a, TraversalDirection.UPSTREAM)
        both = storage.get_edges_for_node(a)
        typed = storage.get_edges_for_node(a, relationship_type=RelationshipType.USES)

        assert [e.relationship_type for e in downstream] == [RelationshipType.USES]
        assert [e.relationship_type for e in upstream] == [RelationshipType.DEPENDS_ON]
        assert len(both) == 2
        assert len(typed) == 1

    def test_query_edges_filter(self, storage, pair, make_edge):
        a, b = pair
        storage.upsert_edges(
            [make_edge(a, b, "uses", confidence=0.4), make_edge(b, a, "depends-on")]
        )
        assert len(storage.query_edges(EdgeFilter(min_confidence=0.5))) == 1
        assert len(storage.query_edges(EdgeFilter(relationship_type="uses"))) == 1

    def test_remove_stale_edges(self, storage, clock, pair, make_edge):
        a, b = pair
        storage.upsert_edges([make_edge(a, b, "uses"), make_edge(b, a, "depends-on")])
        clock.advance(100)
        storage.upsert_edge(make_edge(a, b, "uses"))

        removed = storage.remove_stale_edges(clock() - timedelta(seconds=50))

        assert [e.relationship_type for e in removed] == [RelationshipType.DEPENDS_ON]
        assert len(storage.query_edges()) == 1

    def test_delete_node_removes_edges_and_memberships(self, storage, pair, make_edge):
        a, b = pair
        storage.upsert_edge(make_edge(a, b))
        storage.upsert_group(GraphGroup(id="g", name="G", group_type=GroupType.TEAM))
        storage.add_group_member("g", a)

        assert storage.delete_node(a)
        assert storage.query_edges() == []
        assert storage.get_group_members("g") == []
        assert not storage.delete_node(a)

    def test_delete_edge(self, storage, pair, make_edge):
        edge_id = storage.upsert_edge(make_edge(*pair)).edge_id
        assert storage.delete_edge(edge_id)
        assert storage.get_edge(edge_id) is None
        assert not storage.delete_edge(edge_id)


class TestChangeLedger:
    def test_timeline_oldest_first_with_limit(self, storage, clock):
        for i in range(5):
            storage.append_change(
                GraphChange(
                    target_id="n",
                    change_type=ChangeType.NODE_UPDATED,
                    field="name",
                    new_value=f"v{i}",
                    detected_at=clock.advance(),
                )
            )
        storage.append_change(
            GraphChange(target_id="other", change_type=ChangeType.NODE_CREATED)
        )

        timeline = storage.get_node_timeline("n", limit=3)
        assert [c.new_value for c in timeline] == ["v2", "v3", "v4"]
        assert storage.get_node_timeline("n", limit=0) == []

    def test_changes_round_trip(self, storage, clock):
        change = GraphChange(
            target_id="n",
            change_type=ChangeType.COST_CHANGED,
            field="cost_monthly",
            previous_value=10.0,
            new_value=12.5,
            detected_at=clock(),
            correlation_id="sync-1",
            metadata={"provider": "aws"},
        )
        storage.append_changes([change])
        assert storage.get_changes() == [change]

    def test_filter_by_correlation_and_type(self, storage):
        storage.append_changes(
            [
                GraphChange(target_id="a", change_type=ChangeType.NODE_CREATED, correlation_id="c1"),
                GraphChange(target_id="b", change_type=ChangeType.EDGE_CREATED, correlation_id="c1"),
                GraphChange(target_id="c", change_type=ChangeType.NODE_CREATED, correlation_id="c2"),
            ]
        )
        assert len(storage.get_changes(ChangeFilter(correlation_id="c1"))) == 2
        created = storage.get_changes(ChangeFilter(change_type="node-created"))
        assert [c.target_id for c in created] == ["a", "c"]


class TestNeighbors:
    @pytest.fixture
    def chain(self, storage, make_node, make_edge):
        nodes = [make_node(name) for name in ("a", "b", "c", "d")]
        storage.upsert_nodes(nodes)
        a, b, c, d = (n.id for n in nodes)
        storage.upsert_edges(
            [make_edge(a, b, "uses"), make_edge(b, c, "uses"), make_edge(c, d, "uses")]
        )
        return a, b, c, d

    def test_depth_bound(self, storage, chain):
        a, b, c, _ = chain
        result = storage.get_neighbors(a, depth=2)
        assert sorted(_ids(result.nodes)) == sorted([a, b, c])
        assert len(result.edges) == 2
        assert not result.truncated

    def test_direction(self, storage, chain):
        a, b, c, d = chain
        assert _ids(storage.get_neighbors(c, 5, TraversalDirection.UPSTREAM).nodes) == [c, b, a]
        assert _ids(storage.get_neighbors(c, 5, TraversalDirection.DOWNSTREAM).nodes) == [c, d]

    def test_max_nodes_truncates(self, storage, chain):
        result = storage.get_neighbors(chain[0], depth=5, max_nodes=2)
        assert len(result.nodes) == 2
        assert result.truncated

    def test_expired_deadline_truncates(self, storage, chain):
        result = storage.get_neighbors(chain[0], depth=5, deadline=0)
        assert result.truncated

    def test_symmetric_edges_walkable_both_ways(self, storage, make_node, make_edge):
        x, y = make_node("x"), make_node("y")
        storage.upsert_nodes([x, y])
        storage.upsert_edge(make_edge(x.id, y.id, "peers-with"))
        result = storage.get_neighbors(y.id, 1, TraversalDirection.DOWNSTREAM)
        assert x.id in _ids(result.nodes)


class TestGroups:
    def test_group_lifecycle(self, storage, make_node):
        node = make_node("i-1")
        storage.upsert_node(node)
        stored = storage.upsert_group(
            GraphGroup(id="app", name="App", group_type=GroupType.APPLICATION, tags={"a": "b"})
        )
        assert stored.created_at is not None

        storage.add_group_member("app", node.id)
        storage.add_group_member("app", node.id)
        assert _ids(storage.get_group_members("app")) == [node.id]
        assert [g.id for g in storage.get_node_groups(node.id)] == ["app"]
        assert [g.id for g in storage.list_groups(GroupType.APPLICATION)] == ["app"]
        assert storage.list_groups(GroupType.TEAM) == []

        assert storage.remove_group_member("app", node.id)
        assert storage.delete_group("app")
        assert storage.get_group("app") is None

    def test_upsert_keeps_created_at(self, storage, clock):
        first = storage.upsert_group(GraphGroup(id="g", name="G", group_type="team"))
        clock.advance(5)
        second = storage.upsert_group(GraphGroup(id="g", name="G2", group_type="team"))
        assert second.created_at == first.created_at
        assert storage.get_group("g").name == "G2"

    def test_member_errors(self, storage, make_node):
        node = make_node("i-1")
        storage.upsert_node(node)
        with pytest.raises(GroupNotFoundError):
            storage.add_group_member("missing", node.id)
        storage.upsert_group(GraphGroup(id="g", name="G", group_type="team"))
        with pytest.raises(NodeNotFoundError):
            storage.add_group_member("g", "aws:acct:x:compute:ghost")


class TestSyncRecordsAndStats:
    def test_sync_records_newest_first(self, storage, clock):
        first = SyncRecord(provider="aws", started_at=clock())
        second = SyncRecord(provider="gcp", started_at=clock.advance(10))
        storage.save_sync_record(first)
        storage.save_sync_record(second)

        assert [r.id for r in storage.list_sync_records()] == [second.id, first.id]
        assert storage.get_last_sync_record("aws").id == first.id
        assert storage.list_sync_records(limit=1)[0].id == second.id

    def test_sync_record_replaced_by_id(self, storage, clock):
        record = SyncRecord(provider="aws", started_at=clock(), status=SyncStatus.RUNNING)
        storage.save_sync_record(record)
        done = record.model_copy(
            update={"status": SyncStatus.COMPLETED, "errors": ["x"], "nodes_created": 2}
        )
        storage.save_sync_record(done)

        stored = storage.list_sync_records()
        assert len(stored) == 1
        assert stored[0].status == SyncStatus.COMPLETED
        assert stored[0].errors == ["x"]
        assert stored[0].nodes_created == 2

    def test_stats(self, storage, clock, make_node, make_edge):
        a = make_node("a", cost_monthly=10)
        b = make_node("b", provider="gcp", resource_type="storage", cost_monthly=2.5)
        storage.upsert_nodes([a, b])
        storage.upsert_edge(make_edge(a.id, b.id, "reads-from"))
        storage.append_change(GraphChange(target_id=a.id, change_type="node-created", detected_at=clock()))
        storage.save_sync_record(
            SyncRecord(provider="aws", started_at=clock(), completed_at=clock.advance())
        )

        stats = storage.get_stats()
        assert stats.total_nodes == 2
        assert stats.total_edges == 1
        assert stats.total_changes == 1
        assert stats.nodes_by_provider == {"aws": 1, "gcp": 1}
        assert stats.edges_by_relationship_type == {"reads-from": 1}
        assert stats.total_cost_monthly == pytest.approx(12.5)
        assert stats.last_sync_at == clock()
