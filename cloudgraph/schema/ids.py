"""Deterministic identifiers for nodes and edges."""

import uuid

from .errors import InvalidIdentifierError
from .types import CloudProvider, RelationshipType, ResourceType


def build_node_id(
    provider: CloudProvider | str,
    account: str,
    region: str,
    resource_type: ResourceType | str,
    native_id: str,
) -> str:
    """Build the graph-wide node id.

    The id is `provider:account:region:resourceType:nativeId` and is the
    dedup key for node upserts, so it must be a pure function of its inputs.

    Args:
        provider: Owning cloud provider.
        account: Account, subscription or project id.
        region: Region, location or zone.
        resource_type: Abstract resource category.
        native_id: Provider-native identifier (ARN, resource path, ...).

    Returns:
        The node id.

    Raises:
        InvalidIdentifierError: If provider, resource type or native id is empty.
    """
    provider_value = _enum_value(provider)
    type_value = _enum_value(resource_type)
    if not provider_value or not type_value or not native_id:
        raise InvalidIdentifierError(
            "provider, resource_type and native_id are required to build a node id"
        )
    return f"{provider_value}:{account or ''}:{region or ''}:{type_value}:{native_id}"


def canonical_pair(
    source_node_id: str,
    target_node_id: str,
    relationship_type: RelationshipType | str,
) -> tuple[str, str]:
    """Return the stored (source, target) ordering for a relationship.

    Symmetric relationships are stored once per unordered pair, with the
    lexicographically smaller node id as source.
    """
    rel = RelationshipType(relationship_type)
    if rel.is_symmetric and target_node_id < source_node_id:
        return target_node_id, source_node_id
    return source_node_id, target_node_id


def build_edge_id(
    source_node_id: str,
    target_node_id: str,
    relationship_type: RelationshipType | str,
) -> str:
    """Build the dedup id for an edge from its (source, target, type) triple."""
    rel = RelationshipType(relationship_type)
    source, target = canonical_pair(source_node_id, target_node_id, rel)
    return f"{source}--{rel.value}--{target}"


def new_change_id() -> str:
    """Random id for ledger entries and sync records."""
    return uuid.uuid4().hex


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value or "")
