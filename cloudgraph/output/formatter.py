"""Output formatting for command results."""

import json
from typing import Any, Literal

from pydantic import BaseModel

from ..inference.summary import CrossCloudSummary
from ..schema.models import DriftResult, GraphChange, GraphStats, SubgraphResult, SyncRecord
from ..sync.engine import SyncWave
from ..validators.base import Severity, ValidationIssue, ValidationResult

OutputFormat = Literal["text", "json"]


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json")


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def format_validation_result(result: ValidationResult, format: OutputFormat = "text") -> str:
    """Format a validation result for output.

    Args:
        result: The validation result to format.
        format: Output format ("text" or "json").

    Returns:
        Formatted string representation.
    """
    if format == "json":
        return _to_json(
            {
                "valid": result.is_valid,
                "error_count": len(result.errors),
                "warning_count": len(result.warnings),
                "issues": [
                    {
                        "code": issue.code,
                        "message": issue.message,
                        "severity": issue.severity.value,
                        "node_id": issue.node_id,
                        "edge_id": issue.edge_id,
                        "details": issue.details,
                    }
                    for issue in result.issues
                ],
            }
        )

    lines: list[str] = []
    errors = result.errors
    warnings = result.warnings

    lines.append("ERRORS:")
    lines.extend(f"  {_format_issue_text(issue)}" for issue in errors)
    if not errors:
        lines.append("  (none)")

    lines.append("")

    lines.append("WARNINGS:")
    lines.extend(f"  {_format_issue_text(issue)}" for issue in warnings)
    if not warnings:
        lines.append("  (none)")

    lines.append("")
    if result.is_valid:
        if warnings:
            lines.append(f"Validation passed with {len(warnings)} warning(s)")
        else:
            lines.append("Validation passed")
    else:
        lines.append(f"Validation failed: {len(errors)} error(s), {len(warnings)} warning(s)")

    return "\n".join(lines)


def _format_issue_text(issue: ValidationIssue) -> str:
    location = f"[{issue.location}] " if issue.location else ""

    if issue.severity == Severity.ERROR:
        symbol = "✘"
    elif issue.severity == Severity.WARNING:
        symbol = "⚠"
    else:
        symbol = "ℹ"

    return f"{symbol} {issue.code}: {location}{issue.message}"


# -----------------------------------------------------------------------------
# Sync
# -----------------------------------------------------------------------------


def format_sync_wave(wave: SyncWave, format: OutputFormat = "text") -> str:
    if format == "json":
        return _to_json(
            {
                "id": wave.id,
                "status": wave.status.value,
                "records": [_dump(record) for record in wave.records],
                "edges_inferred": wave.edges_inferred,
                "edges_created": wave.edges_created,
                "edges_removed": wave.edges_removed,
                "changes_recorded": wave.changes_recorded,
                "inference_skipped": wave.inference.skipped if wave.inference else 0,
                "errors": wave.errors,
            }
        )

    lines = [f"Sync {wave.id}: {wave.status.value}"]
    for record in wave.records:
        lines.append(f"  {_format_record_text(record)}")
        lines.extend(f"    ! {error}" for error in record.errors)
    if wave.inference is not None:
        lines.append(
            f"  inference: {wave.edges_inferred} edge(s), {wave.edges_created} new, "
            f"{wave.inference.skipped} skipped evaluation(s)"
        )
    if wave.edges_removed:
        lines.append(f"  pruned {wave.edges_removed} stale edge(s)")
    lines.extend(f"  ! {error}" for error in wave.errors)
    return "\n".join(lines)


def _format_record_text(record: SyncRecord) -> str:
    return (
        f"{record.provider:<10} {record.status.value:<10} "
        f"nodes {record.nodes_discovered} (+{record.nodes_created} ~{record.nodes_updated} "
        f"-{record.nodes_disappeared}) edges {record.edges_discovered} "
        f"(+{record.edges_created}) changes {record.changes_recorded} "
        f"{record.duration_ms or 0}ms"
    )


# -----------------------------------------------------------------------------
# Stats and summaries
# -----------------------------------------------------------------------------


def _format_counts(title: str, counts: dict[str, Any]) -> list[str]:
    lines = [f"{title}:"]
    if not counts:
        lines.append("  (none)")
    for key, value in sorted(counts.items()):
        lines.append(f"  {key:<24} {value}")
    return lines


def format_stats(stats: GraphStats, format: OutputFormat = "text") -> str:
    if format == "json":
        return _to_json(_dump(stats))

    lines = [
        f"Nodes:   {stats.total_nodes}",
        f"Edges:   {stats.total_edges}",
        f"Changes: {stats.total_changes}",
        f"Groups:  {stats.total_groups}",
        f"Monthly cost: ${stats.total_cost_monthly:,.2f}",
        f"Last sync: {stats.last_sync_at.isoformat() if stats.last_sync_at else 'never'}",
        "",
    ]
    lines.extend(_format_counts("Nodes by provider", stats.nodes_by_provider))
    lines.extend(_format_counts("Nodes by resource type", stats.nodes_by_resource_type))
    lines.extend(_format_counts("Edges by relationship", stats.edges_by_relationship_type))
    return "\n".join(lines)


def format_cross_cloud_summary(summary: CrossCloudSummary, format: OutputFormat = "text") -> str:
    if format == "json":
        return _to_json(_dump(summary))

    lines = [
        f"Cross-cloud edges: {summary.total_cross_cloud_edges}",
        f"Workload connections: {summary.ai_workload_connections}",
        "",
    ]
    lines.extend(_format_counts("By relationship", summary.by_relationship))
    lines.extend(_format_counts("By provider pair", summary.by_provider_pair))
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Subgraphs, timelines and drift
# -----------------------------------------------------------------------------


def format_subgraph(result: SubgraphResult, format: OutputFormat = "text") -> str:
    if format == "json":
        return _to_json(_dump(result))

    if not result.nodes:
        return f"Node '{result.root_node_id}' not found"

    lines = [
        f"Blast radius of {result.root_node_id}: {len(result.nodes)} node(s), "
        f"{len(result.edges)} edge(s), ${result.total_cost_monthly:,.2f}/month"
    ]
    for hop in sorted(result.hops):
        lines.append(f"  hop {hop}:")
        for node_id in result.hops[hop]:
            node = result.nodes.get(node_id)
            label = f"{node.name} ({node.resource_type.value})" if node else node_id
            lines.append(f"    {label}  {node_id}")
    if result.truncated:
        lines.append("  (truncated)")
    return "\n".join(lines)


def format_timeline(changes: list[GraphChange], format: OutputFormat = "text") -> str:
    if format == "json":
        return _to_json([_dump(change) for change in changes])

    if not changes:
        return "No changes recorded"
    lines = []
    for change in changes:
        detail = ""
        if change.field:
            detail = f" {change.field}: {change.previous_value} -> {change.new_value}"
        elif change.new_value:
            detail = f" {change.new_value}"
        lines.append(
            f"{change.detected_at.isoformat()}  {change.change_type.value:<16}"
            f" [{change.detected_via.value}]{detail}"
        )
    return "\n".join(lines)


def format_drift_result(result: DriftResult, format: OutputFormat = "text") -> str:
    if format == "json":
        return _to_json(_dump(result))

    lines = [
        f"Drift scan at {result.scanned_at.isoformat()}: "
        f"{len(result.drifted_nodes)} drifted, {len(result.new_nodes)} new, "
        f"{len(result.disappeared_nodes)} disappeared"
    ]
    for drifted in result.drifted_nodes:
        lines.append(f"  ~ {drifted.node.id}")
        for change in drifted.changes:
            lines.append(f"      {change.field}: {change.previous_value} -> {change.new_value}")
    lines.extend(f"  + {node.id}" for node in result.new_nodes)
    lines.extend(f"  - {node.id}" for node in result.disappeared_nodes)
    lines.extend(f"  ! {error}" for error in result.errors)
    return "\n".join(lines)
