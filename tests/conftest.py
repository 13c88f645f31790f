"""Shared fixtures for tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cloudgraph.adapters.base import DiscoverOptions, DiscoveryAdapter, DiscoveryResult
from cloudgraph.schema.models import GraphEdgeInput, GraphNode, GraphNodeInput
from cloudgraph.schema.types import CloudProvider, ResourceType
from cloudgraph.storage.memory import InMemoryGraphStorage
from cloudgraph.storage.sqlite import SQLiteGraphStorage

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic time source; only moves when advanced."""

    def __init__(self, start: datetime = EPOCH):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class StaticAdapter(DiscoveryAdapter):
    """Adapter returning a fixed, replaceable discovery result."""

    def __init__(self, provider, nodes=None, edges=None, errors=None, fail=None):
        self.provider = CloudProvider(provider)
        self.nodes = list(nodes or [])
        self.edges = list(edges or [])
        self.errors = list(errors or [])
        self.fail = fail
        self.calls = 0

    def supported_resource_types(self):
        return list(ResourceType)

    def discover(self, options: DiscoverOptions | None = None) -> DiscoveryResult:
        self.calls += 1
        if self.fail is not None:
            raise self.fail
        nodes, edges = self.apply_options(list(self.nodes), list(self.edges), options)
        return DiscoveryResult(
            provider=self.provider, nodes=nodes, edges=edges, errors=list(self.errors)
        )


@pytest.fixture
def examples_dir() -> Path:
    """Return the path to the examples directory."""
    return Path(__file__).parent.parent / "examples"


@pytest.fixture
def inventory_dir(examples_dir) -> Path:
    return examples_dir / "inventory"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path, clock):
    """Every storage backend, initialized against the fake clock."""
    if request.param == "memory":
        backend = InMemoryGraphStorage(clock=clock)
    else:
        backend = SQLiteGraphStorage(tmp_path / "graph.db", clock=clock)
    backend.initialize()
    yield backend
    backend.close()


@pytest.fixture
def memory_storage(clock):
    backend = InMemoryGraphStorage(clock=clock)
    backend.initialize()
    return backend


@pytest.fixture
def make_node():
    """Factory for node inputs with sensible defaults."""

    def _make(
        native_id: str,
        provider: str = "aws",
        resource_type: str = "compute",
        **fields,
    ) -> GraphNodeInput:
        fields.setdefault("account", "acct")
        fields.setdefault("region", "us-east-1")
        return GraphNodeInput(
            provider=provider, resource_type=resource_type, native_id=native_id, **fields
        )

    return _make


@pytest.fixture
def make_stored():
    """Factory for stored nodes, for code that reads rather than writes."""

    def _make(
        native_id: str,
        provider: str = "aws",
        resource_type: str = "compute",
        **fields,
    ) -> GraphNode:
        fields.setdefault("account", "acct")
        fields.setdefault("region", "us-east-1")
        node = GraphNodeInput(
            provider=provider, resource_type=resource_type, native_id=native_id, **fields
        )
        return GraphNode.from_input(node, EPOCH)

    return _make


@pytest.fixture
def make_edge():
    def _make(source: str, target: str, rel: str = "depends-on", **fields) -> GraphEdgeInput:
        return GraphEdgeInput(
            source_node_id=source, target_node_id=target, relationship_type=rel, **fields
        )

    return _make


@pytest.fixture
def static_adapter():
    """Factory for StaticAdapter instances."""
    return StaticAdapter
