"""Orphan node detection validator."""

from ..graph.infra_graph import InfraGraph
from ..graph.queries import find_orphans
from .base import ValidationResult


def check_orphan_nodes(graph: InfraGraph) -> ValidationResult:
    """Check for nodes with no relationships.

    An orphan is often a resource created outside infrastructure-as-code,
    a leftover from a failed deletion, or a gap in adapter coverage.

    Args:
        graph: The infrastructure graph to check.

    Returns:
        ValidationResult with warnings for orphan nodes.
    """
    result = ValidationResult()

    for node in find_orphans(graph):
        result.add_warning(
            code="ORPHAN_NODE",
            message=f"Node '{node.name}' has no relationships to other nodes",
            node_id=node.id,
            provider=node.provider.value,
            resource_type=node.resource_type.value,
        )

    return result
