"""Relationship inference over the merged, multi-provider node set."""

import logging
import time
from dataclasses import dataclass, field

from ..config.models import InferenceConfig
from ..schema.models import GraphEdgeInput, GraphNode, NodeFilter
from ..schema.types import DiscoveryMethod, NodeStatus, RelationshipType
from ..storage.base import GraphStorage
from .rules import InferenceRule, MatchContext, RuleMatch, default_rules
from .structural import infer_structural_edges

logger = logging.getLogger(__name__)

# Matcher failures on malformed node fields; anything else is a bug.
SKIPPABLE_ERRORS = (ValueError, TypeError, KeyError, AttributeError)

INACTIVE_STATUSES = frozenset({NodeStatus.DISAPPEARED, NodeStatus.DELETED})


@dataclass
class InferenceResult:
    """Edges produced by one inference pass."""

    edges: list[GraphEdgeInput] = field(default_factory=list)
    matches: list[RuleMatch] = field(default_factory=list)
    structural_edges: int = 0
    pairs_evaluated: int = 0
    skipped: int = 0
    duration_ms: int = 0

    @property
    def cross_cloud_edges(self) -> list[GraphEdgeInput]:
        return [edge for edge in self.edges if edge.metadata.get("crossCloud")]


class RelationshipInferenceEngine:
    """Applies the rule registry to every cross-provider node pair.

    Rules are evaluated in registry order; a candidate whose canonical
    (source, target, relationship) triple was already produced is dropped,
    so the first matching rule decides the stored confidence.
    """

    def __init__(
        self,
        config: InferenceConfig | None = None,
        rules: list[InferenceRule] | None = None,
        include_structural: bool = True,
    ):
        self.config = config or InferenceConfig()
        all_rules = rules if rules is not None else default_rules()
        self.rules = [rule for rule in all_rules if self.config.rule_enabled(rule.id)]
        self.include_structural = include_structural

    def infer(
        self, nodes: list[GraphNode], fresh_ids: set[str] | None = None
    ) -> InferenceResult:
        """Produce inferred edges for a node set.

        Args:
            nodes: The complete current node set, all providers.
            fresh_ids: Restrict evaluation to pairs with at least one of these
                node ids. None evaluates every pair.

        Returns:
            InferenceResult with deduplicated edges in discovery order.
        """
        started = time.perf_counter()
        result = InferenceResult()
        active = sorted(
            (node for node in nodes if node.status not in INACTIVE_STATUSES),
            key=lambda node: node.id,
        )
        seen: dict[tuple[str, str, RelationshipType], GraphEdgeInput] = {}

        if self.include_structural:
            for edge in infer_structural_edges(active, self.config, fresh_ids):
                if edge.key not in seen:
                    seen[edge.key] = edge
                    result.structural_edges += 1

        providers = {node.provider for node in active}
        if len(providers) > 1 and self.rules:
            ctx = MatchContext(self.config)
            for i, a in enumerate(active):
                for b in active[i + 1 :]:
                    if a.provider == b.provider:
                        continue
                    if fresh_ids is not None and a.id not in fresh_ids and b.id not in fresh_ids:
                        continue
                    result.pairs_evaluated += 1
                    self._evaluate_pair(a, b, ctx, seen, result)

        result.edges = list(seen.values())
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "Inference evaluated %d pairs: %d edges (%d structural), %d skipped",
            result.pairs_evaluated,
            len(result.edges),
            result.structural_edges,
            result.skipped,
        )
        return result

    def _evaluate_pair(
        self,
        a: GraphNode,
        b: GraphNode,
        ctx: MatchContext,
        seen: dict[tuple[str, str, RelationshipType], GraphEdgeInput],
        result: InferenceResult,
    ) -> None:
        for rule in self.rules:
            if not rule.applies_to(a, b):
                continue
            try:
                match = rule.evaluate(a, b, ctx)
            except SKIPPABLE_ERRORS as e:
                result.skipped += 1
                logger.debug("Rule %s skipped for %s / %s: %s", rule.id, a.id, b.id, e)
                continue
            if match is None:
                continue
            edge = GraphEdgeInput(
                source_node_id=match.source_node_id,
                target_node_id=match.target_node_id,
                relationship_type=match.relationship,
                confidence=match.confidence,
                discovered_via=DiscoveryMethod.CONFIG_SCAN,
                metadata={"crossCloud": True, "rule": rule.id, "reason": match.reason},
            )
            if edge.key in seen:
                continue
            seen[edge.key] = edge
            result.matches.append(match)

    def run(self, storage: GraphStorage, fresh_ids: set[str] | None = None) -> InferenceResult:
        """Infer over everything stored, without persisting."""
        return self.infer(storage.query_nodes(NodeFilter()), fresh_ids)


def discover_cross_cloud_relationships(
    storage: GraphStorage, config: InferenceConfig | None = None
) -> list[GraphEdgeInput]:
    """Cross-cloud edges implied by the stored nodes (not persisted)."""
    engine = RelationshipInferenceEngine(config, include_structural=False)
    return engine.run(storage).edges
