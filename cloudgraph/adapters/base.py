"""The discovery-adapter contract and helpers shared by concrete adapters."""

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, TypeVar

from ..schema.models import GraphEdgeInput, GraphNodeInput
from ..schema.types import CloudProvider, ResourceType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterError(Exception):
    """Raised when an adapter cannot run discovery at all."""

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


@dataclass(frozen=True)
class DiscoveryError:
    """A non-fatal failure while enumerating part of a provider."""

    message: str
    resource_type: str | None = None
    region: str | None = None

    def __str__(self) -> str:
        scope = ""
        if self.resource_type:
            scope = f" [{self.resource_type}"
            if self.region:
                scope += f"@{self.region}"
            scope += "]"
        return f"{scope.strip()} {self.message}".strip()


@dataclass
class DiscoverOptions:
    """Provider-neutral discovery filters."""

    tags: dict[str, str] | None = None
    limit: int | None = None
    resource_types: list[ResourceType] | None = None
    regions: list[str] | None = None


@dataclass
class DiscoveryResult:
    """What one `discover()` call produced."""

    provider: CloudProvider
    nodes: list[GraphNodeInput] = field(default_factory=list)
    edges: list[GraphEdgeInput] = field(default_factory=list)
    errors: list[DiscoveryError] = field(default_factory=list)
    duration_ms: int | None = None


@dataclass(frozen=True)
class EnumerationTask(Generic[T]):
    """One independent listing call, e.g. one resource type in one region."""

    fetch: Callable[[], T]
    resource_type: str | None = None
    region: str | None = None


class DiscoveryAdapter(ABC):
    """Converts one provider's resource listings into graph inputs.

    Node ids must be a pure function of the resource identity, and links the
    provider API reports directly are emitted as `api-field` edges at full
    confidence.
    """

    provider: CloudProvider
    display_name: str = ""

    @abstractmethod
    def supported_resource_types(self) -> list[ResourceType]:
        """Resource types this adapter can emit."""

    @abstractmethod
    def discover(self, options: DiscoverOptions | None = None) -> DiscoveryResult:
        """Enumerate the provider.

        Failures that affect only part of the enumeration are reported in
        `DiscoveryResult.errors`.

        Raises:
            AdapterError: If discovery could not be started at all.
        """

    def health_check(self) -> bool:
        """Lightweight connectivity probe."""
        return True

    def supports_incremental_sync(self) -> bool:
        """Every cycle is a full snapshot unless overridden."""
        return False

    @staticmethod
    def apply_options(
        nodes: list[GraphNodeInput],
        edges: list[GraphEdgeInput],
        options: DiscoverOptions | None,
    ) -> tuple[list[GraphNodeInput], list[GraphEdgeInput]]:
        """Apply tag, region, resource-type and limit filters after normalization.

        Edges that lose an endpoint owned by this discovery are dropped;
        edges pointing outside it are kept.

        Returns:
            The filtered (nodes, edges).
        """
        if options is None:
            return nodes, edges

        kept = list(nodes)
        if options.tags:
            kept = [
                node
                for node in kept
                if all(node.tags.get(key) == value for key, value in options.tags.items())
            ]
        if options.regions:
            kept = [node for node in kept if node.region in options.regions]
        if options.resource_types:
            kept = [node for node in kept if node.resource_type in options.resource_types]
        if options.limit is not None:
            kept = kept[: options.limit]

        all_ids = {node.id for node in nodes}
        kept_ids = {node.id for node in kept}
        dropped = all_ids - kept_ids
        kept_edges = [
            edge
            for edge in edges
            if edge.source_node_id not in dropped and edge.target_node_id not in dropped
        ]
        return kept, kept_edges

    @staticmethod
    def enumerate_concurrently(
        tasks: Iterable[EnumerationTask[T]],
        max_workers: int = 4,
    ) -> tuple[list[tuple[EnumerationTask[T], T]], list[DiscoveryError]]:
        """Run independent listing calls with bounded parallelism.

        A failing task becomes a DiscoveryError; the others still complete.
        Results are gathered on the calling thread in submission order.

        Args:
            tasks: The listing calls.
            max_workers: Upper bound on concurrent calls.

        Returns:
            (successful (task, value) pairs, errors).
        """
        tasks = list(tasks)
        if not tasks:
            return [], []

        results: list[tuple[EnumerationTask[T], T]] = []
        errors: list[DiscoveryError] = []
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks)))) as executor:
            futures: list[tuple[EnumerationTask[T], Future[T]]] = [
                (task, executor.submit(task.fetch)) for task in tasks
            ]
            for task, future in futures:
                try:
                    results.append((task, future.result()))
                except Exception as exc:
                    logger.warning(
                        "Enumeration of %s failed: %s", task.resource_type or "resources", exc
                    )
                    errors.append(
                        DiscoveryError(
                            message=str(exc) or type(exc).__name__,
                            resource_type=task.resource_type,
                            region=task.region,
                        )
                    )
        return results, errors


def elapsed_ms(started: float) -> int:
    """Milliseconds since a `time.perf_counter()` reading."""
    return int((time.perf_counter() - started) * 1000)


def coerce_tags(raw: Any) -> dict[str, str]:
    """Labels/tags to a str->str map; non-scalar values are skipped."""
    if not isinstance(raw, dict):
        return {}
    return {
        str(key): str(value)
        for key, value in raw.items()
        if isinstance(value, (str, int, float, bool))
    }


def coerce_cost(raw: Any) -> float | None:
    """A numeric monthly cost, or None when absent or malformed."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None
