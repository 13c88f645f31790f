"""Retention policies for nodes marked disappeared."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from ..config.models import RetentionConfig
from ..schema.models import GraphNode
from ..schema.types import NodeStatus


class RetentionPolicy(ABC):
    """Decides which disappeared nodes are hard-deleted after a sync cycle."""

    @abstractmethod
    def select(self, nodes: list[GraphNode], now: datetime) -> list[str]:
        """Return ids of the nodes to delete."""


class KeepForever(RetentionPolicy):
    """Disappeared nodes stay in the graph with their history."""

    def select(self, nodes: list[GraphNode], now: datetime) -> list[str]:
        return []


class DeleteAfter(RetentionPolicy):
    """Delete nodes that have been disappeared for longer than `age`.

    The marking time is the node's `updated_at`, which the disappearance
    sweep bumps.
    """

    def __init__(self, age: timedelta):
        if age <= timedelta(0):
            raise ValueError("Retention age must be positive")
        self.age = age

    def select(self, nodes: list[GraphNode], now: datetime) -> list[str]:
        cutoff = now - self.age
        return [
            node.id
            for node in nodes
            if node.status == NodeStatus.DISAPPEARED and node.updated_at < cutoff
        ]


def build_retention_policy(config: RetentionConfig | None) -> RetentionPolicy:
    if config is None or config.policy == "keep":
        return KeepForever()
    return DeleteAfter(timedelta(days=config.delete_after_days))
