"""Build change-ledger entries from upsert outcomes."""

from datetime import datetime

from ..schema.diff import COST_FIELD, diff_node
from ..schema.models import GraphChange, GraphEdge, GraphNode, GraphNodeInput, edge_target_id
from ..schema.types import ChangeType, DetectionMethod, NodeStatus
from ..storage.base import EdgeUpsertResult, NodeUpsertResult


def field_changes(
    existing: GraphNode,
    incoming: GraphNodeInput,
    detected_at: datetime,
    correlation_id: str | None = None,
    detected_via: DetectionMethod = DetectionMethod.SYNC,
    change_type: ChangeType | None = None,
) -> list[GraphChange]:
    """One change per differing field.

    Cost differences are recorded as cost-changed, every other field as
    node-updated, unless `change_type` forces a single kind (drift scans).
    """
    changes = []
    for diff in diff_node(existing, incoming):
        kind = change_type
        if kind is None:
            kind = ChangeType.COST_CHANGED if diff.field == COST_FIELD else ChangeType.NODE_UPDATED
        changes.append(
            GraphChange(
                target_id=existing.id,
                change_type=kind,
                field=diff.field,
                previous_value=diff.previous,
                new_value=diff.current,
                detected_at=detected_at,
                detected_via=detected_via,
                correlation_id=correlation_id,
            )
        )
    return changes


def node_changes(
    result: NodeUpsertResult, detected_at: datetime, correlation_id: str | None = None
) -> list[GraphChange]:
    """Ledger entries for one node upsert: created, per-field updates, or nothing."""
    if result.created:
        node = result.current
        return [
            GraphChange(
                target_id=node.id,
                change_type=ChangeType.NODE_CREATED,
                new_value=node.name,
                detected_at=detected_at,
                correlation_id=correlation_id,
                metadata={
                    "provider": node.provider.value,
                    "resourceType": node.resource_type.value,
                },
            )
        ]
    if result.updated and result.previous is not None:
        return field_changes(result.previous, result.current, detected_at, correlation_id)
    return []


def describe_edge(edge: GraphEdge) -> str:
    return f"{edge.source_node_id} -[{edge.relationship_type.value}]-> {edge.target_node_id}"


def edge_created_change(
    result: EdgeUpsertResult, detected_at: datetime, correlation_id: str | None = None
) -> GraphChange:
    return GraphChange(
        target_id=edge_target_id(result.edge_id),
        change_type=ChangeType.EDGE_CREATED,
        new_value=describe_edge(result.edge),
        detected_at=detected_at,
        correlation_id=correlation_id,
        metadata={
            "relationshipType": result.edge.relationship_type.value,
            "confidence": result.edge.confidence,
            "discoveredVia": result.edge.discovered_via.value,
        },
    )


def edge_deleted_change(
    edge: GraphEdge,
    detected_at: datetime,
    correlation_id: str | None = None,
    reason: str = "stale",
) -> GraphChange:
    return GraphChange(
        target_id=edge_target_id(edge.id),
        change_type=ChangeType.EDGE_DELETED,
        previous_value=describe_edge(edge),
        detected_at=detected_at,
        correlation_id=correlation_id,
        metadata={"relationshipType": edge.relationship_type.value, "reason": reason},
    )


def disappeared_change(
    node_id: str, detected_at: datetime, correlation_id: str | None = None
) -> GraphChange:
    return GraphChange(
        target_id=node_id,
        change_type=ChangeType.NODE_DISAPPEARED,
        field="status",
        new_value=NodeStatus.DISAPPEARED,
        detected_at=detected_at,
        correlation_id=correlation_id,
    )


def deleted_change(
    node_id: str, detected_at: datetime, correlation_id: str | None = None
) -> GraphChange:
    return GraphChange(
        target_id=node_id,
        change_type=ChangeType.NODE_DELETED,
        previous_value=NodeStatus.DISAPPEARED,
        detected_at=detected_at,
        correlation_id=correlation_id,
        metadata={"reason": "retention"},
    )
