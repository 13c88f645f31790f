"""Edge and identifier integrity validators."""

from collections import defaultdict

from ..schema.errors import SchemaError
from ..schema.ids import build_edge_id, build_node_id, canonical_pair
from ..schema.models import GraphEdge, GraphNode
from .base import ValidationResult


def check_dangling_edges(nodes: list[GraphNode], edges: list[GraphEdge]) -> ValidationResult:
    """Check that every edge endpoint is a stored node.

    Args:
        nodes: All stored nodes.
        edges: All stored edges.

    Returns:
        ValidationResult with an error per missing endpoint.
    """
    result = ValidationResult()
    known = {node.id for node in nodes}

    for edge in edges:
        for role, endpoint in (("source", edge.source_node_id), ("target", edge.target_node_id)):
            if endpoint not in known:
                result.add_error(
                    code="DANGLING_EDGE",
                    message=f"Edge {role} '{endpoint}' is not a stored node",
                    edge_id=edge.id,
                    missing_node_id=endpoint,
                )

    return result


def check_symmetric_edges(edges: list[GraphEdge]) -> ValidationResult:
    """Check that symmetric relationships are stored once, in canonical order.

    Args:
        edges: All stored edges.

    Returns:
        ValidationResult with errors for reversed pairs and duplicates.
    """
    result = ValidationResult()
    by_pair: dict[tuple, list[GraphEdge]] = defaultdict(list)

    for edge in edges:
        if not edge.relationship_type.is_symmetric:
            continue
        pair = canonical_pair(
            edge.source_node_id, edge.target_node_id, edge.relationship_type
        )
        if pair != (edge.source_node_id, edge.target_node_id):
            result.add_error(
                code="NON_CANONICAL_SYMMETRIC_EDGE",
                message=(
                    f"Symmetric '{edge.relationship_type.value}' edge is stored "
                    f"target-first"
                ),
                edge_id=edge.id,
            )
        by_pair[(*pair, edge.relationship_type)].append(edge)

    for (first, second, relationship), group in by_pair.items():
        if len(group) > 1:
            result.add_error(
                code="DUPLICATE_SYMMETRIC_EDGE",
                message=(
                    f"{len(group)} '{relationship.value}' edges stored between "
                    f"'{first}' and '{second}'"
                ),
                edge_id=group[0].id,
                edge_ids=[edge.id for edge in group],
            )

    return result


def check_identifiers(nodes: list[GraphNode], edges: list[GraphEdge]) -> ValidationResult:
    """Check that stored ids match the ids their components produce.

    Args:
        nodes: All stored nodes.
        edges: All stored edges.

    Returns:
        ValidationResult with errors for ids that would not be rebuilt.
    """
    result = ValidationResult()

    for node in nodes:
        try:
            expected = build_node_id(
                node.provider, node.account, node.region, node.resource_type, node.native_id
            )
        except SchemaError as e:
            result.add_error(
                code="NON_DETERMINISTIC_NODE_ID",
                message=f"Node id cannot be rebuilt: {e}",
                node_id=node.id,
            )
            continue
        if expected != node.id:
            result.add_error(
                code="NON_DETERMINISTIC_NODE_ID",
                message=f"Stored id differs from the derived id '{expected}'",
                node_id=node.id,
                expected=expected,
            )

    for edge in edges:
        expected = build_edge_id(
            edge.source_node_id, edge.target_node_id, edge.relationship_type
        )
        if expected != edge.id:
            result.add_error(
                code="NON_DETERMINISTIC_EDGE_ID",
                message=f"Stored edge id differs from the derived id '{expected}'",
                edge_id=edge.id,
                expected=expected,
            )

    return result


def check_confidence(edges: list[GraphEdge]) -> ValidationResult:
    """Check that every edge confidence lies in [0, 1]."""
    result = ValidationResult()

    for edge in edges:
        if not 0.0 <= edge.confidence <= 1.0:
            result.add_error(
                code="CONFIDENCE_OUT_OF_RANGE",
                message=f"Confidence {edge.confidence} is outside [0, 1]",
                edge_id=edge.id,
            )

    return result
