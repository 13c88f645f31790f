"""Integrity validators for the stored graph."""

from .base import Severity, ValidationIssue, ValidationResult
from .integrity import (
    check_confidence,
    check_dangling_edges,
    check_identifiers,
    check_symmetric_edges,
)
from .orphan_detector import check_orphan_nodes
from .runner import run_validators

__all__ = [
    "Severity",
    "ValidationIssue",
    "ValidationResult",
    "check_confidence",
    "check_dangling_edges",
    "check_identifiers",
    "check_symmetric_edges",
    "check_orphan_nodes",
    "run_validators",
]
