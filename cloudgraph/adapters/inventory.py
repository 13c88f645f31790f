"""Discovery adapter over a static YAML inventory file.

Example inventory:

    provider: aws
    account: "111111111111"
    region: us-east-1
    resources:
      vpc:
        - native_id: vpc-0a1
          name: core
          tags: {peering: azure}
          metadata: {cidrBlock: 10.0.0.0/16}
      compute:
        - native_id: i-0b2
          cost_monthly: 70.5
          references:
            - runs-in: vpc-0a1
            - target: "gcp:proj:global:vpc:net-1"
              type: connected-to
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..config.errors import ConfigLoadError
from ..config.loader import load_yaml
from ..schema.errors import SchemaError
from ..schema.models import GraphEdgeInput, GraphNodeInput
from ..schema.types import (
    CloudProvider,
    DiscoveryMethod,
    NodeStatus,
    RelationshipType,
    ResourceType,
)
from .base import (
    AdapterError,
    DiscoverOptions,
    DiscoveryAdapter,
    DiscoveryError,
    DiscoveryResult,
    EnumerationTask,
    coerce_cost,
    coerce_tags,
    elapsed_ms,
)

logger = logging.getLogger(__name__)


def _looks_like_node_id(value: str) -> bool:
    return value.count(":") >= 4


class InventoryAdapter(DiscoveryAdapter):
    """Reads one provider's resources from a YAML document.

    Each resource type is normalized as an independent enumeration, so a
    malformed section is reported as a partial error without hiding the
    rest of the inventory.
    """

    def __init__(
        self,
        path: str | Path,
        provider: CloudProvider | str | None = None,
        max_workers: int = 4,
    ):
        self.path = Path(path)
        self.max_workers = max_workers
        self._provider_override = CloudProvider(provider) if provider else None
        self.provider = self._provider_override or self._peek_provider()
        self.display_name = f"Inventory ({self.path.name})"

    def _peek_provider(self) -> CloudProvider:
        try:
            data = load_yaml(self.path)
        except ConfigLoadError:
            return CloudProvider.CUSTOM
        try:
            return CloudProvider(data.get("provider", CloudProvider.CUSTOM.value))
        except ValueError:
            return CloudProvider.CUSTOM

    def supported_resource_types(self) -> list[ResourceType]:
        return list(ResourceType)

    def health_check(self) -> bool:
        try:
            load_yaml(self.path)
        except ConfigLoadError:
            return False
        return True

    def discover(self, options: DiscoverOptions | None = None) -> DiscoveryResult:
        """Normalize the inventory into nodes and api-field edges.

        Raises:
            AdapterError: If the file cannot be read or has no resources map.
        """
        started = time.perf_counter()
        try:
            data = load_yaml(self.path)
        except ConfigLoadError as e:
            raise AdapterError(str(e), self.provider.value) from e

        resources = data.get("resources", {})
        if not isinstance(resources, dict):
            raise AdapterError(
                f"'resources' must be a mapping of resource type to list in {self.path}",
                self.provider.value,
            )

        defaults = {
            "account": str(data.get("account", "") or ""),
            "region": str(data.get("region", "") or ""),
        }

        tasks = [
            EnumerationTask(
                fetch=lambda key=key, items=items: self._normalize_section(key, items, defaults),
                resource_type=str(key),
            )
            for key, items in resources.items()
        ]
        outcomes, errors = self.enumerate_concurrently(tasks, self.max_workers)

        nodes: list[GraphNodeInput] = []
        pending_refs: list[tuple[GraphNodeInput, list[Any]]] = []
        for _task, (section_nodes, section_refs, section_errors) in outcomes:
            nodes.extend(section_nodes)
            pending_refs.extend(section_refs)
            errors.extend(section_errors)

        by_native_id = {node.native_id: node.id for node in nodes}
        edges: list[GraphEdgeInput] = []
        for node, references in pending_refs:
            for reference in references:
                edge, error = self._resolve_reference(node, reference, by_native_id)
                if edge is not None:
                    edges.append(edge)
                if error is not None:
                    errors.append(error)

        nodes, edges = self.apply_options(nodes, edges, options)
        return DiscoveryResult(
            provider=self.provider,
            nodes=nodes,
            edges=edges,
            errors=errors,
            duration_ms=elapsed_ms(started),
        )

    # -- normalization ---------------------------------------------------------

    def _normalize_section(
        self, key: Any, items: Any, defaults: dict[str, str]
    ) -> tuple[list[GraphNodeInput], list[tuple[GraphNodeInput, list[Any]]], list[DiscoveryError]]:
        try:
            resource_type = ResourceType(key)
        except ValueError as e:
            raise ValueError(f"Unknown resource type: {key}") from e
        if not isinstance(items, list):
            raise ValueError(f"Expected a list of resources, got {type(items).__name__}")

        nodes = []
        refs = []
        errors = []
        for index, raw in enumerate(items):
            if not isinstance(raw, dict):
                errors.append(
                    DiscoveryError(f"Entry {index} is not a mapping", resource_type.value)
                )
                continue
            try:
                node = self._normalize_resource(raw, resource_type, defaults)
            except (ValidationError, SchemaError) as e:
                errors.append(
                    DiscoveryError(
                        f"Entry {index} skipped: {e}".splitlines()[0], resource_type.value
                    )
                )
                continue
            nodes.append(node)
            references = raw.get("references") or []
            if isinstance(references, list) and references:
                refs.append((node, references))
        return nodes, refs, errors

    def _normalize_resource(
        self, raw: dict, resource_type: ResourceType, defaults: dict[str, str]
    ) -> GraphNodeInput:
        """Map one entry onto GraphNodeInput, dropping fields that do not parse."""
        native_id = raw.get("native_id") or raw.get("id")
        region = raw.get("region", defaults["region"])
        fields: dict[str, Any] = {
            "provider": self.provider,
            "resource_type": resource_type,
            "native_id": str(native_id) if native_id is not None else "",
            "name": str(raw.get("name") or ""),
            "region": str(region or ""),
            "account": str(raw.get("account", defaults["account"]) or ""),
            "tags": coerce_tags(raw.get("tags")),
            "metadata": raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {},
            "cost_monthly": coerce_cost(raw.get("cost_monthly")),
        }

        owner = raw.get("owner") or fields["tags"].get("owner") or fields["tags"].get("team")
        if owner:
            fields["owner"] = str(owner)

        status = raw.get("status")
        if status is not None:
            try:
                fields["status"] = NodeStatus(str(status).lower())
            except ValueError:
                logger.debug("Ignoring unknown status %r for %s", status, native_id)
        else:
            fields["status"] = NodeStatus.RUNNING

        created_at = raw.get("created_at")
        if isinstance(created_at, datetime):
            fields["created_at"] = created_at
        elif isinstance(created_at, str):
            try:
                fields["created_at"] = datetime.fromisoformat(created_at)
            except ValueError:
                logger.debug("Ignoring unparsable created_at %r for %s", created_at, native_id)

        return GraphNodeInput(**fields)

    def _resolve_reference(
        self, node: GraphNodeInput, reference: Any, by_native_id: dict[str, str]
    ) -> tuple[GraphEdgeInput | None, DiscoveryError | None]:
        target, rel = self._parse_reference(reference)
        if target is None or rel is None:
            return None, DiscoveryError(
                f"Malformed reference on {node.native_id}: {reference!r}",
                node.resource_type.value,
            )

        target_id = by_native_id.get(target)
        if target_id is None and _looks_like_node_id(target):
            target_id = target
        if target_id is None:
            return None, DiscoveryError(
                f"Unresolved reference from {node.native_id} to {target}",
                node.resource_type.value,
            )
        if target_id == node.id:
            return None, None

        edge = GraphEdgeInput(
            source_node_id=node.id,
            target_node_id=target_id,
            relationship_type=rel,
            confidence=1.0,
            discovered_via=DiscoveryMethod.API_FIELD,
            metadata={"field": "references"},
        )
        return edge, None

    @staticmethod
    def _parse_reference(reference: Any) -> tuple[str | None, RelationshipType | None]:
        """Accept `{target, type}` or the `{<relationship>: <target>}` shorthand."""
        if not isinstance(reference, dict):
            return None, None
        if "target" in reference:
            try:
                rel = RelationshipType(reference.get("type", RelationshipType.DEPENDS_ON.value))
            except ValueError:
                return None, None
            return str(reference["target"]), rel
        if len(reference) == 1:
            key, value = next(iter(reference.items()))
            try:
                return str(value), RelationshipType(key)
            except ValueError:
                return None, None
        return None, None
