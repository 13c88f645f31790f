"""Field-level comparison between a stored node and an incoming observation."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .models import GraphNode, GraphNodeInput, json_shape

# Fields an observation may change. Identity fields are excluded since they
# are encoded in the id.
DIFF_FIELDS = (
    "name",
    "status",
    "region",
    "account",
    "owner",
    "tags",
    "metadata",
    "cost_monthly",
    "created_at",
)

COST_FIELD = "cost_monthly"


@dataclass(frozen=True)
class FieldDiff:
    """A single differing field."""

    field: str
    previous: Any
    current: Any


def _canonical(value: Any) -> Any:
    """Reduce a value to the JSON shape storage keeps.

    Map keys become strings, as they do in a JSON column, so an observation
    compares equal to its own stored copy whatever its key types.
    """
    if isinstance(value, Enum):
        value = value.value
    return json_shape(value)


def diff_node(
    existing: GraphNode | GraphNodeInput, incoming: GraphNodeInput
) -> list[FieldDiff]:
    """Compare two observations of the same node.

    Maps are compared by content, so key order never produces a diff. A
    missing `created_at` on the incoming side is not a difference.

    Args:
        existing: The stored node (or a previous observation).
        incoming: The fresh observation.

    Returns:
        One FieldDiff per differing field, in DIFF_FIELDS order.
    """
    diffs = []
    for name in DIFF_FIELDS:
        previous = getattr(existing, name)
        current = getattr(incoming, name)
        if name == "created_at" and current is None:
            # Providers that stop reporting a creation time keep the known one.
            continue
        if _canonical(previous) != _canonical(current):
            diffs.append(FieldDiff(field=name, previous=previous, current=current))
    return diffs
