"""Aggregate statistics over stored cross-cloud edges."""

from collections import Counter

from pydantic import BaseModel, Field

from ..config.models import InferenceConfig
from ..schema.models import GraphNode
from ..storage.base import GraphStorage


class CrossCloudSummary(BaseModel):
    total_cross_cloud_edges: int = 0
    by_relationship: dict[str, int] = Field(default_factory=dict)
    by_provider_pair: dict[str, int] = Field(default_factory=dict)
    ai_workload_connections: int = 0


def provider_pair_label(a: str, b: str) -> str:
    """Unordered pair label, e.g. `aws<->gcp`."""
    first, second = sorted((a, b))
    return f"{first}<->{second}"


def _is_workload(node: GraphNode, flags: list[str]) -> bool:
    return any(node.metadata.get(flag) is True for flag in flags)


def get_cross_cloud_summary(
    storage: GraphStorage, config: InferenceConfig | None = None
) -> CrossCloudSummary:
    """Count stored edges whose endpoints live on different providers.

    Edges with a missing endpoint and same-provider edges are not counted.
    Workload connections use the metadata flags from `config`.
    """
    workload_flags = (config or InferenceConfig()).workload_flags
    nodes = {node.id: node for node in storage.query_nodes()}
    by_relationship: Counter[str] = Counter()
    by_pair: Counter[str] = Counter()
    total = 0
    workload_connections = 0

    for edge in storage.query_edges():
        source = nodes.get(edge.source_node_id)
        target = nodes.get(edge.target_node_id)
        if source is None or target is None or source.provider == target.provider:
            continue
        total += 1
        by_relationship[edge.relationship_type.value] += 1
        by_pair[provider_pair_label(source.provider.value, target.provider.value)] += 1
        if _is_workload(source, workload_flags) or _is_workload(target, workload_flags):
            workload_connections += 1

    return CrossCloudSummary(
        total_cross_cloud_edges=total,
        by_relationship=dict(sorted(by_relationship.items())),
        by_provider_pair=dict(sorted(by_pair.items())),
        ai_workload_connections=workload_connections,
    )
