"""Text and JSON rendering of command results."""

from .formatter import (
    format_cross_cloud_summary,
    format_drift_result,
    format_stats,
    format_subgraph,
    format_sync_wave,
    format_timeline,
    format_validation_result,
)

__all__ = [
    "format_cross_cloud_summary",
    "format_drift_result",
    "format_stats",
    "format_subgraph",
    "format_sync_wave",
    "format_timeline",
    "format_validation_result",
]
