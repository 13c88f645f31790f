"""Same-provider structural edges derived from metadata reference fields."""

from collections import defaultdict
from typing import Iterable

from ..config.models import InferenceConfig
from ..schema.models import GraphEdgeInput, GraphNode
from ..schema.types import CloudProvider, DiscoveryMethod, RelationshipType

# metadata key -> relationship from the holder to the referenced node
STRUCTURAL_FIELDS: dict[str, RelationshipType] = {
    "vpcId": RelationshipType.RUNS_IN,
    "networkId": RelationshipType.RUNS_IN,
    "subnetId": RelationshipType.RUNS_IN,
    "subnetIds": RelationshipType.RUNS_IN,
    "clusterArn": RelationshipType.RUNS_IN,
    "clusterName": RelationshipType.RUNS_IN,
    "securityGroupId": RelationshipType.SECURED_BY,
    "securityGroupIds": RelationshipType.SECURED_BY,
    "securityGroups": RelationshipType.SECURED_BY,
    "roleArn": RelationshipType.USES,
    "executionRoleArn": RelationshipType.USES,
    "serviceAccount": RelationshipType.USES,
    "kmsKeyId": RelationshipType.ENCRYPTS_WITH,
    "kmsKeyArn": RelationshipType.ENCRYPTS_WITH,
    "topicArn": RelationshipType.PUBLISHES_TO,
    "queueArn": RelationshipType.SUBSCRIBES_TO,
    "targetGroupArns": RelationshipType.LOAD_BALANCES,
}


def short_id(value: str) -> str:
    """Last path or ARN segment: `arn:aws:iam::1:role/app` -> `app`."""
    return value.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]


class _ProviderIndex:
    """Native id and short id lookups for one provider's nodes."""

    def __init__(self, nodes: Iterable[GraphNode]):
        self.by_native: dict[str, str] = {}
        shorts: dict[str, set[str]] = defaultdict(set)
        for node in nodes:
            self.by_native[node.native_id] = node.id
            shorts[short_id(node.native_id)].add(node.id)
        # ambiguous short ids resolve to nothing
        self.by_short = {key: next(iter(ids)) for key, ids in shorts.items() if len(ids) == 1}

    def resolve(self, reference: str) -> str | None:
        return self.by_native.get(reference) or self.by_short.get(short_id(reference))


def _references(value) -> list[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str) and item]
    return []


def infer_structural_edges(
    nodes: list[GraphNode],
    config: InferenceConfig | None = None,
    fresh_ids: set[str] | None = None,
) -> list[GraphEdgeInput]:
    """Resolve metadata reference fields against nodes of the same provider.

    Args:
        nodes: Candidate nodes, any providers.
        config: Supplies the structural confidence.
        fresh_ids: When given, only edges touching one of these ids are returned.

    Returns:
        config-scan edges, one per (source, target, relationship).
    """
    config = config or InferenceConfig()
    by_provider: dict[CloudProvider, list[GraphNode]] = defaultdict(list)
    for node in nodes:
        by_provider[node.provider].append(node)

    edges: dict[tuple[str, str, RelationshipType], GraphEdgeInput] = {}
    for provider_nodes in by_provider.values():
        index = _ProviderIndex(provider_nodes)
        for node in provider_nodes:
            for key, relationship in STRUCTURAL_FIELDS.items():
                for reference in _references(node.metadata.get(key)):
                    target_id = index.resolve(reference)
                    if target_id is None or target_id == node.id:
                        continue
                    if fresh_ids is not None and not (
                        node.id in fresh_ids or target_id in fresh_ids
                    ):
                        continue
                    edge = GraphEdgeInput(
                        source_node_id=node.id,
                        target_node_id=target_id,
                        relationship_type=relationship,
                        confidence=config.structural_confidence,
                        discovered_via=DiscoveryMethod.CONFIG_SCAN,
                        metadata={"field": key},
                    )
                    edges.setdefault(edge.key, edge)
    return list(edges.values())
