"""Cross-cloud relationship rules.

Each rule declares the provider pairs and resource-type pairs it applies to
and a matcher that inspects one pair of nodes. Matchers return None when the
evidence is absent and raise ValueError/TypeError/KeyError/AttributeError on
malformed fields; the engine skips such evaluations.
"""

import ipaddress
import json
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Callable

from ..config.models import InferenceConfig
from ..schema.models import GraphNode
from ..schema.types import CloudProvider, RelationshipType, ResourceType

NETWORK_TYPES = frozenset({ResourceType.VPC, ResourceType.NETWORK})
IDENTITY_TYPES = frozenset({ResourceType.IDENTITY, ResourceType.IAM_ROLE})
DNS_TYPES = frozenset({ResourceType.DNS})
STORAGE_TYPES = frozenset({ResourceType.STORAGE})

MAJOR_CLOUDS = (CloudProvider.AWS, CloudProvider.AZURE, CloudProvider.GCP)
MAJOR_CLOUD_PAIRS = frozenset(frozenset(pair) for pair in combinations(MAJOR_CLOUDS, 2))

# Federation principals that name a provider's identity service.
FEDERATION_PRINCIPALS = {
    CloudProvider.GCP: ("accounts.google.com",),
    CloudProvider.AZURE: ("sts.windows.net",),
    CloudProvider.AWS: ("amazonaws.com",),
}

CIDR_KEYS = ("cidrBlock", "addressPrefix")

OUTPUT_HINTS = ("output", "destination", "sink", "export", "write")


@dataclass(frozen=True)
class RuleMatch:
    """Evidence for one relationship between a pair of nodes."""

    source_node_id: str
    target_node_id: str
    relationship: RelationshipType
    confidence: float
    reason: str
    rule_id: str = ""


class MatchContext:
    """Per-pass state handed to matchers: the config and cached node text."""

    def __init__(self, config: InferenceConfig):
        self.config = config
        self._text: dict[str, str] = {}

    def metadata_text(self, node: GraphNode) -> str:
        """Lower-cased JSON of a node's metadata, computed once per pass."""
        text = self._text.get(node.id)
        if text is None:
            text = json.dumps(node.metadata, default=str).lower()
            self._text[node.id] = text
        return text

    def long_enough(self, value: str | None) -> bool:
        return bool(value) and len(value) >= self.config.min_reference_length

    def is_workload(self, node: GraphNode) -> bool:
        return any(node.metadata.get(flag) is True for flag in self.config.workload_flags)


Matcher = Callable[[GraphNode, GraphNode, MatchContext], RuleMatch | None]

TypeSet = frozenset[ResourceType] | None


@dataclass(frozen=True)
class InferenceRule:
    """A typed rule entry: where it applies and how it matches."""

    id: str
    name: str
    description: str
    provider_pairs: frozenset[frozenset[CloudProvider]]
    resource_type_pairs: tuple[tuple[TypeSet, TypeSet], ...]
    matcher: Matcher = field(compare=False)

    def applies_to(self, a: GraphNode, b: GraphNode) -> bool:
        """Whether the pair's providers and resource types are in scope.

        Pairs are unordered: a type pair matches in either orientation.
        """
        if a.provider == b.provider:
            return False
        if frozenset({a.provider, b.provider}) not in self.provider_pairs:
            return False
        if not self.resource_type_pairs:
            return True
        for left, right in self.resource_type_pairs:
            if _type_ok(a, left) and _type_ok(b, right):
                return True
            if _type_ok(b, left) and _type_ok(a, right):
                return True
        return False

    def evaluate(self, a: GraphNode, b: GraphNode, ctx: MatchContext) -> RuleMatch | None:
        match = self.matcher(a, b, ctx)
        if match is None:
            return None
        return RuleMatch(
            source_node_id=match.source_node_id,
            target_node_id=match.target_node_id,
            relationship=match.relationship,
            confidence=match.confidence,
            reason=match.reason,
            rule_id=self.id,
        )


def _type_ok(node: GraphNode, allowed: TypeSet) -> bool:
    return allowed is None or node.resource_type in allowed


# -----------------------------------------------------------------------------
# 1. Naming / tag convention
# -----------------------------------------------------------------------------


def _peering_tag_text(node: GraphNode, ctx: MatchContext) -> str:
    keys = {key.lower() for key in ctx.config.peering_tag_keys}
    return " ".join(
        value.lower() for key, value in node.tags.items() if key.lower() in keys
    )


def _peering_connections_text(node: GraphNode) -> str:
    raw = node.metadata.get("peeringConnections")
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw.lower()
    if isinstance(raw, (list, tuple)):
        return " ".join(str(item) for item in raw).lower()
    raise TypeError(f"peeringConnections must be a string or list, got {type(raw).__name__}")


def _refers_to(node: GraphNode, other: GraphNode, ctx: MatchContext) -> bool:
    provider = other.provider.value
    tags = _peering_tag_text(node, ctx)
    other_name = other.name.lower()
    return (
        provider in node.name.lower()
        or provider in tags
        or (ctx.long_enough(other_name) and other_name in tags)
        or provider in _peering_connections_text(node)
    )


def match_naming_convention(a: GraphNode, b: GraphNode, ctx: MatchContext) -> RuleMatch | None:
    a_refers = _refers_to(a, b, ctx)
    b_refers = _refers_to(b, a, ctx)
    if not (a_refers or b_refers):
        return None
    mutual = a_refers and b_refers
    return RuleMatch(
        source_node_id=a.id,
        target_node_id=b.id,
        relationship=RelationshipType.PEERS_WITH,
        confidence=(
            ctx.config.naming_mutual_confidence
            if mutual
            else ctx.config.naming_one_way_confidence
        ),
        reason=(
            f"Network peering convention between {a.provider.value} and {b.provider.value}"
            + (" (mutual)" if mutual else "")
        ),
    )


# -----------------------------------------------------------------------------
# 2. CIDR overlap
# -----------------------------------------------------------------------------


def _cidr(node: GraphNode) -> str | None:
    for key in CIDR_KEYS:
        value = node.metadata.get(key)
        if value:
            if not isinstance(value, str):
                raise TypeError(f"{key} must be a string, got {type(value).__name__}")
            return value
    return None


def match_cidr_overlap(a: GraphNode, b: GraphNode, ctx: MatchContext) -> RuleMatch | None:
    a_cidr, b_cidr = _cidr(a), _cidr(b)
    if not a_cidr or not b_cidr:
        return None
    a_net = ipaddress.ip_network(a_cidr, strict=False)
    b_net = ipaddress.ip_network(b_cidr, strict=False)
    if a_net.version != b_net.version or not a_net.overlaps(b_net):
        return None
    return RuleMatch(
        source_node_id=a.id,
        target_node_id=b.id,
        relationship=RelationshipType.PEERS_WITH,
        confidence=ctx.config.cidr_overlap_confidence,
        reason=f"Address ranges {a_net} and {b_net} overlap",
    )


# -----------------------------------------------------------------------------
# 3. Shared DNS
# -----------------------------------------------------------------------------


def match_shared_dns(a: GraphNode, b: GraphNode, ctx: MatchContext) -> RuleMatch | None:
    if a.resource_type in DNS_TYPES:
        dns, target = a, b
    elif b.resource_type in DNS_TYPES:
        dns, target = b, a
    else:
        return None

    dns_text = ctx.metadata_text(dns)
    native_id = target.native_id.lower()
    name = target.name.lower()
    if (
        (ctx.long_enough(native_id) and native_id in dns_text)
        or (ctx.long_enough(name) and name in dns_text)
        or (ctx.long_enough(name) and name in dns.name.lower())
    ):
        return RuleMatch(
            source_node_id=dns.id,
            target_node_id=target.id,
            relationship=RelationshipType.RESOLVES_TO,
            confidence=ctx.config.dns_confidence,
            reason=(
                f"DNS zone in {dns.provider.value} resolves to "
                f"{target.resource_type.value} in {target.provider.value}"
            ),
        )
    return None


# -----------------------------------------------------------------------------
# 4. Federated identity
# -----------------------------------------------------------------------------


def _trusts(node: GraphNode, other: GraphNode, ctx: MatchContext) -> bool:
    text = ctx.metadata_text(node)
    if other.provider.value in text:
        return True
    return any(principal in text for principal in FEDERATION_PRINCIPALS.get(other.provider, ()))


def match_federated_identity(
    a: GraphNode, b: GraphNode, ctx: MatchContext
) -> RuleMatch | None:
    if _trusts(a, b, ctx):
        principal, provider_node = a, b
    elif _trusts(b, a, ctx):
        principal, provider_node = b, a
    else:
        return None
    return RuleMatch(
        source_node_id=principal.id,
        target_node_id=provider_node.id,
        relationship=RelationshipType.AUTHENTICATED_BY,
        confidence=ctx.config.federated_identity_confidence,
        reason=(
            f"Identity in {principal.provider.value} trusts a "
            f"{provider_node.provider.value} federation principal"
        ),
    )


# -----------------------------------------------------------------------------
# 5. Cross-cloud workload affinity
# -----------------------------------------------------------------------------


def model_identifier(node: GraphNode, ctx: MatchContext) -> str | None:
    for key in ctx.config.model_keys:
        value = node.metadata.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise TypeError(f"{key} must be a string, got {type(value).__name__}")
        return value.strip()
    return None


def match_workload_affinity(a: GraphNode, b: GraphNode, ctx: MatchContext) -> RuleMatch | None:
    a_flagged = ctx.is_workload(a)
    b_flagged = ctx.is_workload(b)
    if not (a_flagged or b_flagged):
        return None

    if a_flagged and b_flagged:
        a_model = model_identifier(a, ctx)
        b_model = model_identifier(b, ctx)
        if a_model and a_model == b_model:
            return RuleMatch(
                source_node_id=a.id,
                target_node_id=b.id,
                relationship=RelationshipType.DEPENDS_ON,
                confidence=ctx.config.ai_model_match_confidence,
                reason=(
                    f'Workload model "{a_model}" spans '
                    f"{a.provider.value} and {b.provider.value}"
                ),
            )
        if a.owner and a.owner == b.owner:
            return RuleMatch(
                source_node_id=a.id,
                target_node_id=b.id,
                relationship=RelationshipType.DEPENDS_ON,
                confidence=ctx.config.ai_owner_match_confidence,
                reason=f'Workloads in {a.provider.value} and {b.provider.value} share owner "{a.owner}"',
            )

    for workload, other in ((a, b), (b, a)):
        if not ctx.is_workload(workload):
            continue
        text = ctx.metadata_text(workload)
        native_id = other.native_id.lower()
        name = other.name.lower()
        if (ctx.long_enough(native_id) and native_id in text) or (
            ctx.long_enough(name) and name in text
        ):
            return RuleMatch(
                source_node_id=workload.id,
                target_node_id=other.id,
                relationship=RelationshipType.DEPENDS_ON,
                confidence=ctx.config.ai_reference_confidence,
                reason=(
                    f"Workload in {workload.provider.value} references "
                    f"{other.resource_type.value} in {other.provider.value}"
                ),
            )
    return None


# -----------------------------------------------------------------------------
# 6. Shared storage references
# -----------------------------------------------------------------------------


def find_reference(value: Any, needles: list[str], key: str = "") -> str | None:
    """Return the metadata key whose string value contains any needle.

    Nested mappings and lists are searched depth-first; the innermost mapping
    key is returned ("" when the match is in a top-level list).
    """
    if isinstance(value, str):
        lowered = value.lower()
        return key if any(needle in lowered for needle in needles) else None
    if isinstance(value, dict):
        for child_key, child in value.items():
            found = find_reference(child, needles, str(child_key))
            if found is not None:
                return found
    elif isinstance(value, (list, tuple)):
        for child in value:
            found = find_reference(child, needles, key)
            if found is not None:
                return found
    return None


def _storage_needles(storage: GraphNode, ctx: MatchContext) -> list[str]:
    name = storage.name.lower()
    needles = [f"s3://{name}", f"gs://{name}", f"{name}.blob.core.windows.net"]
    if ctx.long_enough(name):
        needles.append(name)
    native_id = storage.native_id.lower()
    if ctx.long_enough(native_id):
        needles.append(native_id)
    return needles


def match_shared_storage(a: GraphNode, b: GraphNode, ctx: MatchContext) -> RuleMatch | None:
    for storage, consumer in ((a, b), (b, a)):
        if storage.resource_type not in STORAGE_TYPES:
            continue
        if not storage.name and not storage.native_id:
            continue
        key = find_reference(consumer.metadata, _storage_needles(storage, ctx))
        if key is None:
            continue
        writes = any(hint in key.lower() for hint in OUTPUT_HINTS)
        return RuleMatch(
            source_node_id=consumer.id,
            target_node_id=storage.id,
            relationship=RelationshipType.WRITES_TO if writes else RelationshipType.READS_FROM,
            confidence=ctx.config.shared_storage_confidence,
            reason=(
                f"{consumer.provider.value} {consumer.resource_type.value} references "
                f"storage in {storage.provider.value} via '{key or 'metadata'}'"
            ),
        )
    return None


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


NAMING_CONVENTION = InferenceRule(
    id="naming-convention",
    name="VPN / peering by naming convention",
    description="Networks whose name or peering tag references the other provider",
    provider_pairs=MAJOR_CLOUD_PAIRS,
    resource_type_pairs=((NETWORK_TYPES, NETWORK_TYPES),),
    matcher=match_naming_convention,
)

CIDR_OVERLAP = InferenceRule(
    id="cidr-overlap",
    name="VPN / peering by address overlap",
    description="Networks in different clouds whose CIDR ranges overlap",
    provider_pairs=MAJOR_CLOUD_PAIRS,
    resource_type_pairs=((NETWORK_TYPES, NETWORK_TYPES),),
    matcher=match_cidr_overlap,
)

SHARED_DNS = InferenceRule(
    id="shared-dns",
    name="Shared DNS",
    description="DNS zones whose records name a resource in another cloud",
    provider_pairs=MAJOR_CLOUD_PAIRS,
    resource_type_pairs=((DNS_TYPES, None),),
    matcher=match_shared_dns,
)

FEDERATED_IDENTITY = InferenceRule(
    id="federated-identity",
    name="Federated identity",
    description="Identities that trust another cloud's federation principal",
    provider_pairs=MAJOR_CLOUD_PAIRS,
    resource_type_pairs=((IDENTITY_TYPES, IDENTITY_TYPES),),
    matcher=match_federated_identity,
)

WORKLOAD_AFFINITY = InferenceRule(
    id="workload-affinity",
    name="Cross-cloud workload affinity",
    description="Flagged workloads sharing a model, an owner or a direct reference",
    provider_pairs=MAJOR_CLOUD_PAIRS,
    resource_type_pairs=(),
    matcher=match_workload_affinity,
)

SHARED_STORAGE = InferenceRule(
    id="shared-storage",
    name="Shared storage",
    description="Metadata that references a bucket or blob store in another cloud",
    provider_pairs=MAJOR_CLOUD_PAIRS,
    resource_type_pairs=((STORAGE_TYPES, None),),
    matcher=match_shared_storage,
)


def default_rules() -> list[InferenceRule]:
    """The built-in rules, in first-match-wins order."""
    return [
        NAMING_CONVENTION,
        CIDR_OVERLAP,
        SHARED_DNS,
        FEDERATED_IDENTITY,
        WORKLOAD_AFFINITY,
        SHARED_STORAGE,
    ]
