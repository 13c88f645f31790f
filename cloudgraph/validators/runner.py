"""Validation runner that orchestrates all validators."""

from ..graph.builder import graph_from
from ..storage.base import GraphStorage
from .base import ValidationResult
from .integrity import (
    check_confidence,
    check_dangling_edges,
    check_identifiers,
    check_symmetric_edges,
)
from .orphan_detector import check_orphan_nodes


def run_validators(storage: GraphStorage) -> ValidationResult:
    """Run all integrity checks over the stored graph.

    Args:
        storage: The graph storage to check.

    Returns:
        Combined ValidationResult from all validators.
    """
    nodes = storage.query_nodes()
    edges = storage.query_edges()
    result = ValidationResult()

    # Dangling edges first (most fundamental)
    result.merge(check_dangling_edges(nodes, edges))

    result.merge(check_identifiers(nodes, edges))
    result.merge(check_symmetric_edges(edges))
    result.merge(check_confidence(edges))

    result.merge(check_orphan_nodes(graph_from(nodes, edges)))

    return result
