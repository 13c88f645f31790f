"""Sync orchestration, drift detection and graph analysis over storage."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta

from ..adapters.base import DiscoverOptions, DiscoveryAdapter, DiscoveryResult
from ..adapters.registry import AdapterRegistry
from ..config.models import EngineConfig
from ..graph.queries import hop_distances
from ..inference.engine import InferenceResult, RelationshipInferenceEngine
from ..schema.ids import new_change_id
from ..schema.models import (
    CostAttribution,
    CostEntry,
    DriftedNode,
    DriftResult,
    GraphChange,
    GraphEdge,
    GraphEdgeInput,
    GraphNode,
    GraphStats,
    NodeFilter,
    SubgraphResult,
    SyncRecord,
)
from ..schema.types import (
    ChangeType,
    CloudProvider,
    DetectionMethod,
    NodeStatus,
    RelationshipType,
    SyncStatus,
    TraversalDirection,
)
from ..storage.base import GraphStorage
from ..storage.errors import StorageError
from .changes import (
    deleted_change,
    disappeared_change,
    edge_created_change,
    edge_deleted_change,
    field_changes,
    node_changes,
)
from .retention import RetentionPolicy, build_retention_policy

logger = logging.getLogger(__name__)

# Statuses a drift scan expects the provider to still report.
LIVE_STATUSES = [
    NodeStatus.RUNNING,
    NodeStatus.STOPPED,
    NodeStatus.PENDING,
    NodeStatus.CREATING,
    NodeStatus.UNKNOWN,
    NodeStatus.ERROR,
]


@dataclass
class SyncWave:
    """One sync call: per-provider records plus the shared inference pass."""

    id: str
    records: list[SyncRecord] = field(default_factory=list)
    inference: InferenceResult | None = None
    edges_inferred: int = 0
    edges_created: int = 0
    edges_removed: int = 0
    changes_recorded: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> SyncStatus:
        """The worst record status, or partial if the post-cycle steps failed."""
        statuses = {record.status for record in self.records}
        if SyncStatus.FAILED in statuses:
            return SyncStatus.FAILED
        if SyncStatus.PARTIAL in statuses or self.errors:
            return SyncStatus.PARTIAL
        return SyncStatus.COMPLETED


@dataclass
class _PostCycle:
    inference: InferenceResult | None = None
    edges_inferred: int = 0
    edges_created: int = 0
    edges_removed: int = 0
    changes_recorded: int = 0
    errors: list[str] = field(default_factory=list)


def _filters_discovery(options: DiscoverOptions | None) -> bool:
    """Whether options hide part of the provider from this discovery."""
    if options is None:
        return False
    return bool(
        options.tags or options.regions or options.resource_types or options.limit is not None
    )


class GraphEngine:
    """Runs discovery cycles into storage and answers analysis queries.

    Each provider cycle goes pending -> running -> completed | partial |
    failed. Partial discovery errors never abort a cycle; the cycle fails
    only when the adapter could not run or nothing could be persisted.
    """

    def __init__(
        self,
        storage: GraphStorage,
        adapters: AdapterRegistry | None = None,
        config: EngineConfig | None = None,
        inference: RelationshipInferenceEngine | None = None,
        retention: RetentionPolicy | None = None,
    ):
        self.storage = storage
        self.adapters = adapters or AdapterRegistry()
        self.config = config or EngineConfig()
        self.inference = inference or RelationshipInferenceEngine(self.config.inference)
        self.retention = retention or build_retention_policy(self.config.retention)

    def register_adapter(self, adapter: DiscoveryAdapter) -> None:
        self.adapters.register(adapter)

    def get_stats(self) -> GraphStats:
        return self.storage.get_stats()

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def _select_adapters(
        self, providers: list[CloudProvider | str] | None
    ) -> list[DiscoveryAdapter]:
        if providers is None:
            return self.adapters.get_all()
        selected = []
        for provider in providers:
            adapter = self.adapters.get(provider)
            if adapter is None:
                logger.warning("No adapter registered for provider %s", provider)
                continue
            selected.append(adapter)
        return selected

    def sync(
        self,
        providers: list[CloudProvider | str] | None = None,
        discover_options: DiscoverOptions | None = None,
    ) -> SyncWave:
        """Run a sync wave.

        Provider cycles run in parallel, bounded by `max_workers`. One
        inference pass over the full node set follows, then stale edges are
        pruned.

        Args:
            providers: Providers to sync; all registered adapters when None.
            discover_options: Filters passed to every adapter.

        Returns:
            The SyncWave with one record per provider, in adapter order.
        """
        adapters = self._select_adapters(providers)
        wave = SyncWave(id=f"wave-{new_change_id()}")
        if not adapters:
            return wave

        workers = min(self.config.max_workers, len(adapters))
        logger.info("Sync wave %s: %d provider(s), %d worker(s)", wave.id, len(adapters), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: list[Future[SyncRecord]] = [
                executor.submit(self._run_cycle, adapter, discover_options)
                for adapter in adapters
            ]
            wave.records = [future.result() for future in futures]

        if all(record.status == SyncStatus.FAILED for record in wave.records):
            return wave

        post = self._post_cycle(wave.id)
        wave.inference = post.inference
        wave.edges_inferred = post.edges_inferred
        wave.edges_created = post.edges_created
        wave.edges_removed = post.edges_removed
        wave.changes_recorded = post.changes_recorded
        wave.errors = post.errors
        logger.info(
            "Sync wave %s finished: %s, %d inferred edge(s), %d removed",
            wave.id,
            wave.status.value,
            wave.edges_inferred,
            wave.edges_removed,
        )
        return wave

    def sync_provider(
        self, adapter: DiscoveryAdapter, discover_options: DiscoverOptions | None = None
    ) -> SyncRecord:
        """Run one provider cycle followed by inference and edge pruning."""
        record = self._run_cycle(adapter, discover_options)
        if record.status == SyncStatus.FAILED:
            return record

        post = self._post_cycle(record.id)
        record.edges_created += post.edges_created
        record.edges_removed += post.edges_removed
        record.changes_recorded += post.changes_recorded
        if post.errors:
            record.errors.extend(post.errors)
            record.status = SyncStatus.PARTIAL
        self.storage.save_sync_record(record)
        return record

    def _run_cycle(
        self, adapter: DiscoveryAdapter, discover_options: DiscoverOptions | None
    ) -> SyncRecord:
        """Discover one provider and merge the result into storage."""
        provider = CloudProvider(adapter.provider)
        started = time.perf_counter()
        record = SyncRecord(
            id=f"sync-{provider.value}-{new_change_id()}",
            provider=provider.value,
            status=SyncStatus.RUNNING,
            started_at=self.storage.now(),
        )
        self.storage.save_sync_record(record)
        logger.info("Sync %s started for %s", record.id, provider.value)

        try:
            result = adapter.discover(discover_options)
        except Exception as e:
            logger.error("Discovery failed for %s: %s", provider.value, e)
            record.errors.append(str(e))
            return self._finish(record, started, SyncStatus.FAILED)

        record.nodes_discovered = len(result.nodes)
        record.edges_discovered = len(result.edges)
        for error in result.errors:
            logger.warning("Discovery error for %s: %s", provider.value, error)
            record.errors.append(str(error))

        try:
            node_results = self.storage.upsert_nodes(result.nodes)
        except StorageError as e:
            logger.error("Storing nodes failed for %s: %s", provider.value, e)
            record.errors.append(str(e))
            return self._finish(record, started, SyncStatus.FAILED)

        changes: list[GraphChange] = []
        now = self.storage.now()
        for node_result in node_results:
            if node_result.created:
                record.nodes_created += 1
            elif node_result.updated:
                record.nodes_updated += 1
            changes.extend(node_changes(node_result, now, record.id))

        try:
            self._store_cycle_edges(result, record, changes)
            self._sweep(provider, record, changes, discover_options)
        except StorageError as e:
            logger.error("Sync %s storage failure: %s", record.id, e)
            record.errors.append(str(e))

        # Only entries for committed writes reach the ledger.
        try:
            self.storage.append_changes(changes)
            record.changes_recorded = len(changes)
        except StorageError as e:
            logger.error("Appending changes failed for %s: %s", record.id, e)
            record.errors.append(str(e))

        status = SyncStatus.PARTIAL if record.errors else SyncStatus.COMPLETED
        return self._finish(record, started, status)

    def _store_cycle_edges(
        self, result: DiscoveryResult, record: SyncRecord, changes: list[GraphChange]
    ) -> None:
        discovered = {node.id for node in result.nodes}
        edges = [edge for edge in result.edges if self._endpoints_known(edge, discovered)]
        if len(edges) < len(result.edges):
            logger.debug(
                "Sync %s: %d edge(s) reference nodes that are not stored yet",
                record.id,
                len(result.edges) - len(edges),
            )
        now = self.storage.now()
        for edge_result in self.storage.upsert_edges(edges):
            if edge_result.created:
                record.edges_created += 1
                changes.append(edge_created_change(edge_result, now, record.id))

    def _endpoints_known(self, edge: GraphEdgeInput, discovered: set[str]) -> bool:
        return all(
            endpoint in discovered or self.storage.get_node(endpoint) is not None
            for endpoint in (edge.source_node_id, edge.target_node_id)
        )

    def _sweep(
        self,
        provider: CloudProvider,
        record: SyncRecord,
        changes: list[GraphChange],
        discover_options: DiscoverOptions | None,
    ) -> None:
        """Mark nodes not re-seen as disappeared, then apply retention."""
        if _filters_discovery(discover_options):
            logger.debug("Sync %s: filtered discovery, skipping disappearance sweep", record.id)
        elif record.errors and not self.config.mark_disappeared_on_partial:
            logger.debug("Sync %s: partial discovery, skipping disappearance sweep", record.id)
        else:
            cutoff = record.started_at - timedelta(seconds=self.config.stale_after_seconds)
            disappeared = self.storage.mark_nodes_disappeared(cutoff, provider.value)
            record.nodes_disappeared = len(disappeared)
            now = self.storage.now()
            changes.extend(disappeared_change(node_id, now, record.id) for node_id in disappeared)

        candidates = self.storage.query_nodes(
            NodeFilter(provider=provider, status=[NodeStatus.DISAPPEARED])
        )
        now = self.storage.now()
        for node_id in self.retention.select(candidates, now):
            # Deleting a node cascades to its edges.
            edges = self.storage.get_edges_for_node(node_id)
            if self.storage.delete_node(node_id):
                record.nodes_deleted += 1
                changes.extend(
                    edge_deleted_change(edge, now, record.id, reason="retention")
                    for edge in edges
                )
                changes.append(deleted_change(node_id, now, record.id))

    def _finish(self, record: SyncRecord, started: float, status: SyncStatus) -> SyncRecord:
        record.status = status
        record.completed_at = self.storage.now()
        record.duration_ms = int((time.perf_counter() - started) * 1000)
        try:
            self.storage.save_sync_record(record)
        except StorageError as e:
            logger.error("Saving sync record %s failed: %s", record.id, e)
        log = logger.info if status == SyncStatus.COMPLETED else logger.warning
        log(
            "Sync %s %s: %d discovered, %d created, %d updated, %d disappeared, %d error(s)",
            record.id,
            status.value,
            record.nodes_discovered,
            record.nodes_created,
            record.nodes_updated,
            record.nodes_disappeared,
            len(record.errors),
        )
        return record

    def _post_cycle(self, correlation_id: str) -> _PostCycle:
        """Infer edges over the full node set and prune stale edges."""
        post = _PostCycle()
        changes: list[GraphChange] = []
        try:
            post.inference = self.inference.run(self.storage)
            post.edges_inferred = len(post.inference.edges)
            now = self.storage.now()
            for edge_result in self.storage.upsert_edges(post.inference.edges):
                if edge_result.created:
                    post.edges_created += 1
                    changes.append(edge_created_change(edge_result, now, correlation_id))

            if self.config.prune_stale_edges:
                cutoff = self.storage.now() - timedelta(
                    seconds=self.config.edge_stale_after_seconds
                )
                removed = self.storage.remove_stale_edges(cutoff)
                post.edges_removed = len(removed)
                now = self.storage.now()
                changes.extend(edge_deleted_change(edge, now, correlation_id) for edge in removed)
        except StorageError as e:
            logger.error("Post-sync step %s failed: %s", correlation_id, e)
            post.errors.append(str(e))

        if changes:
            try:
                self.storage.append_changes(changes)
                post.changes_recorded = len(changes)
            except StorageError as e:
                logger.error("Appending changes failed for %s: %s", correlation_id, e)
                post.errors.append(str(e))
        return post

    # -------------------------------------------------------------------------
    # Drift detection
    # -------------------------------------------------------------------------

    def detect_drift(
        self, provider: CloudProvider | str | None = None, record: bool = False
    ) -> DriftResult:
        """Compare a fresh discovery against stored state without merging it.

        Args:
            provider: Limit the scan to one provider.
            record: Append the node-drifted changes to the ledger.

        Returns:
            DriftResult with drifted, new and disappeared nodes.
        """
        adapters = self._select_adapters([provider] if provider is not None else None)
        scan_id = f"drift-{new_change_id()}"
        result = DriftResult(scanned_at=self.storage.now())

        for adapter in adapters:
            try:
                discovery = adapter.discover()
            except Exception as e:
                logger.error("Drift scan discovery failed for %s: %s", adapter.provider, e)
                result.errors.append(f"{CloudProvider(adapter.provider).value}: {e}")
                continue
            result.errors.extend(str(error) for error in discovery.errors)

            for node_input in discovery.nodes:
                existing = self.storage.get_node(node_input.id)
                if existing is None:
                    result.new_nodes.append(node_input)
                    continue
                changes = field_changes(
                    existing,
                    node_input,
                    result.scanned_at,
                    correlation_id=scan_id,
                    detected_via=DetectionMethod.DRIFT_SCAN,
                    change_type=ChangeType.NODE_DRIFTED,
                )
                if changes:
                    result.drifted_nodes.append(DriftedNode(node=existing, changes=changes))

            if discovery.errors:
                # An incomplete listing cannot prove absence.
                continue
            seen = {node.id for node in discovery.nodes}
            stored = self.storage.query_nodes(
                NodeFilter(provider=CloudProvider(adapter.provider), status=LIVE_STATUSES)
            )
            result.disappeared_nodes.extend(node for node in stored if node.id not in seen)

        if record:
            changes = [change for drifted in result.drifted_nodes for change in drifted.changes]
            if changes:
                self.storage.append_changes(changes)
        logger.info(
            "Drift scan %s: %d drifted, %d new, %d disappeared",
            scan_id,
            len(result.drifted_nodes),
            len(result.new_nodes),
            len(result.disappeared_nodes),
        )
        return result

    # -------------------------------------------------------------------------
    # Blast radius
    # -------------------------------------------------------------------------

    def get_blast_radius(
        self,
        node_id: str,
        depth: int | None = None,
        edge_types: list[RelationshipType] | None = None,
        max_nodes: int | None = None,
        deadline: float | None = None,
    ) -> SubgraphResult:
        """Everything connected to a node within `depth` hops, either direction."""
        return self._subgraph(
            node_id, TraversalDirection.BOTH, depth, edge_types, max_nodes, deadline
        )

    def get_dependency_chain(
        self,
        node_id: str,
        direction: TraversalDirection,
        depth: int | None = None,
        edge_types: list[RelationshipType] | None = None,
        max_nodes: int | None = None,
        deadline: float | None = None,
    ) -> SubgraphResult:
        """Dependencies of a node in one direction.

        Downstream follows the node's outgoing edges (what it depends on or
        runs in); upstream follows incoming edges (what relies on it).
        """
        return self._subgraph(node_id, direction, depth, edge_types, max_nodes, deadline)

    def _subgraph(
        self,
        node_id: str,
        direction: TraversalDirection,
        depth: int | None,
        edge_types: list[RelationshipType] | None,
        max_nodes: int | None,
        deadline: float | None,
    ) -> SubgraphResult:
        if self.storage.get_node(node_id) is None:
            return SubgraphResult(root_node_id=node_id)

        neighbors = self.storage.get_neighbors(
            node_id,
            depth if depth is not None else self.config.max_traversal_depth,
            direction,
            edge_types,
            max_nodes=max_nodes,
            deadline=deadline,
        )
        nodes = {node.id: node for node in neighbors.nodes}
        return SubgraphResult(
            root_node_id=node_id,
            nodes=nodes,
            edges=neighbors.edges,
            hops=hop_distances(node_id, nodes, neighbors.edges),
            total_cost_monthly=sum(node.cost_monthly or 0.0 for node in nodes.values()),
            truncated=neighbors.truncated,
        )

    # -------------------------------------------------------------------------
    # Cost attribution
    # -------------------------------------------------------------------------

    def get_node_cost(self, node_id: str, include_downstream: bool = False) -> CostAttribution:
        node = self.storage.get_node(node_id)
        if node is None:
            return CostAttribution(label=node_id)
        nodes = [node]
        if include_downstream:
            nodes = self.storage.get_neighbors(
                node_id, self.config.max_traversal_depth, TraversalDirection.DOWNSTREAM
            ).nodes
        return build_cost_attribution(node.name, nodes)

    def get_group_cost(self, group_id: str) -> CostAttribution:
        """Cost of a group's members; the total is written back onto the group."""
        group = self.storage.get_group(group_id)
        if group is None:
            return CostAttribution(label=group_id)
        attribution = build_cost_attribution(group.name, self.storage.get_group_members(group_id))
        self.storage.upsert_group(
            group.model_copy(
                update={"cost_monthly": attribution.total_monthly, "updated_at": self.storage.now()}
            )
        )
        return attribution

    def get_cost_by_filter(self, filter: NodeFilter, label: str | None = None) -> CostAttribution:
        return build_cost_attribution(label or "filtered", self.storage.query_nodes(filter))

    # -------------------------------------------------------------------------
    # Timeline and topology
    # -------------------------------------------------------------------------

    def get_timeline(self, node_id: str, limit: int = 50) -> list[GraphChange]:
        return self.storage.get_node_timeline(node_id, limit)

    def get_topology(
        self, filter: NodeFilter | None = None
    ) -> tuple[list[GraphNode], list[GraphEdge]]:
        """Nodes matching `filter` and the edges among them."""
        nodes = self.storage.query_nodes(filter)
        ids = {node.id for node in nodes}
        edges = [
            edge
            for edge in self.storage.query_edges()
            if edge.source_node_id in ids and edge.target_node_id in ids
        ]
        return nodes, edges


def build_cost_attribution(label: str, nodes: list[GraphNode]) -> CostAttribution:
    """Roll up monthly cost; unknown cost counts as zero and is not listed."""
    by_resource_type: dict[str, float] = {}
    by_provider: dict[str, float] = {}
    entries = []
    total = 0.0
    for node in nodes:
        cost = node.cost_monthly or 0.0
        total += cost
        resource_type = node.resource_type.value
        by_resource_type[resource_type] = by_resource_type.get(resource_type, 0.0) + cost
        by_provider[node.provider.value] = by_provider.get(node.provider.value, 0.0) + cost
        if cost > 0:
            entries.append(
                CostEntry(
                    node_id=node.id,
                    name=node.name,
                    resource_type=node.resource_type,
                    cost_monthly=cost,
                )
            )
    entries.sort(key=lambda entry: (-entry.cost_monthly, entry.node_id))
    return CostAttribution(
        label=label,
        total_monthly=total,
        by_resource_type=by_resource_type,
        by_provider=by_provider,
        nodes=entries,
    )
