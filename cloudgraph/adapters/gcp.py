"""Discovery adapter for Google Cloud using Cloud Asset Inventory records.

The adapter never talks to Google APIs itself. It is given a client object
with a `list_assets(parent, asset_types)` method that returns asset records
shaped like the Cloud Asset API JSON:

    {"name": "//compute.googleapis.com/projects/p/zones/us-central1-a/instances/vm1",
     "assetType": "compute.googleapis.com/Instance",
     "resource": {"data": {...}, "location": "us-central1-a"}}
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from pydantic import ValidationError

from ..schema.models import GraphEdgeInput, GraphNodeInput
from ..schema.types import (
    CloudProvider,
    DiscoveryMethod,
    NodeStatus,
    RelationshipType,
    ResourceType,
)
from .base import (
    DiscoverOptions,
    DiscoveryAdapter,
    DiscoveryError,
    DiscoveryResult,
    EnumerationTask,
    coerce_tags,
    elapsed_ms,
)

logger = logging.getLogger(__name__)


class GcpAssetClient(Protocol):
    """The slice of the Cloud Asset client this adapter needs."""

    def list_assets(self, parent: str, asset_types: list[str]) -> list[dict]: ...


@dataclass(frozen=True)
class GcpResourceMapping:
    asset_type: str
    resource_type: ResourceType
    ai_workload: bool = False


@dataclass(frozen=True)
class GcpRelationshipRule:
    """A link the asset payload reports directly.

    `field` is a dotted path; `name[]` fans out over a list.
    """

    source_type: str
    field: str
    target_type: str
    relationship: RelationshipType


GCP_RESOURCE_MAPPINGS: tuple[GcpResourceMapping, ...] = (
    # Compute
    GcpResourceMapping("compute.googleapis.com/Instance", ResourceType.COMPUTE),
    GcpResourceMapping("compute.googleapis.com/InstanceGroup", ResourceType.COMPUTE),
    GcpResourceMapping("compute.googleapis.com/InstanceGroupManager", ResourceType.COMPUTE),
    GcpResourceMapping("compute.googleapis.com/InstanceTemplate", ResourceType.COMPUTE),
    # Containers
    GcpResourceMapping("container.googleapis.com/Cluster", ResourceType.CLUSTER),
    GcpResourceMapping("container.googleapis.com/NodePool", ResourceType.COMPUTE),
    GcpResourceMapping("run.googleapis.com/Service", ResourceType.CONTAINER),
    # Serverless
    GcpResourceMapping("cloudfunctions.googleapis.com/Function", ResourceType.SERVERLESS_FUNCTION),
    GcpResourceMapping(
        "cloudfunctions.googleapis.com/CloudFunction", ResourceType.SERVERLESS_FUNCTION
    ),
    # Networking
    GcpResourceMapping("compute.googleapis.com/Network", ResourceType.VPC),
    GcpResourceMapping("compute.googleapis.com/Subnetwork", ResourceType.SUBNET),
    GcpResourceMapping("compute.googleapis.com/Firewall", ResourceType.SECURITY_GROUP),
    GcpResourceMapping("compute.googleapis.com/ForwardingRule", ResourceType.LOAD_BALANCER),
    GcpResourceMapping("compute.googleapis.com/TargetHttpProxy", ResourceType.LOAD_BALANCER),
    GcpResourceMapping("compute.googleapis.com/TargetHttpsProxy", ResourceType.LOAD_BALANCER),
    GcpResourceMapping("compute.googleapis.com/UrlMap", ResourceType.LOAD_BALANCER),
    GcpResourceMapping("compute.googleapis.com/BackendService", ResourceType.LOAD_BALANCER),
    GcpResourceMapping("compute.googleapis.com/Address", ResourceType.NETWORK),
    GcpResourceMapping("compute.googleapis.com/Router", ResourceType.NAT_GATEWAY),
    GcpResourceMapping("dns.googleapis.com/ManagedZone", ResourceType.DNS),
    # Database
    GcpResourceMapping("sqladmin.googleapis.com/Instance", ResourceType.DATABASE),
    GcpResourceMapping("spanner.googleapis.com/Instance", ResourceType.DATABASE),
    GcpResourceMapping("bigtable.googleapis.com/Instance", ResourceType.DATABASE),
    GcpResourceMapping("firestore.googleapis.com/Database", ResourceType.DATABASE),
    # Cache
    GcpResourceMapping("redis.googleapis.com/Instance", ResourceType.CACHE),
    GcpResourceMapping("memcache.googleapis.com/Instance", ResourceType.CACHE),
    # Storage
    GcpResourceMapping("storage.googleapis.com/Bucket", ResourceType.STORAGE),
    GcpResourceMapping("compute.googleapis.com/Disk", ResourceType.STORAGE),
    # Messaging
    GcpResourceMapping("pubsub.googleapis.com/Topic", ResourceType.TOPIC),
    GcpResourceMapping("pubsub.googleapis.com/Subscription", ResourceType.QUEUE),
    # Security / identity
    GcpResourceMapping("secretmanager.googleapis.com/Secret", ResourceType.SECRET),
    GcpResourceMapping("iam.googleapis.com/ServiceAccount", ResourceType.IDENTITY),
    GcpResourceMapping("iam.googleapis.com/WorkloadIdentityPool", ResourceType.IDENTITY),
    GcpResourceMapping("cloudkms.googleapis.com/CryptoKey", ResourceType.SECRET),
    # Edge
    GcpResourceMapping("apigateway.googleapis.com/Gateway", ResourceType.API_GATEWAY),
    GcpResourceMapping("compute.googleapis.com/BackendBucket", ResourceType.CDN),
    # AI / ML
    GcpResourceMapping("aiplatform.googleapis.com/Endpoint", ResourceType.CUSTOM, True),
    GcpResourceMapping("aiplatform.googleapis.com/Model", ResourceType.CUSTOM, True),
    GcpResourceMapping("aiplatform.googleapis.com/TrainingPipeline", ResourceType.CUSTOM, True),
    GcpResourceMapping("aiplatform.googleapis.com/CustomJob", ResourceType.CUSTOM, True),
    GcpResourceMapping("notebooks.googleapis.com/Instance", ResourceType.CUSTOM, True),
    GcpResourceMapping("tpu.googleapis.com/Node", ResourceType.CUSTOM, True),
)

_MAPPINGS_BY_TYPE = {mapping.asset_type: mapping for mapping in GCP_RESOURCE_MAPPINGS}

GCP_RELATIONSHIP_RULES: tuple[GcpRelationshipRule, ...] = (
    GcpRelationshipRule(
        "compute.googleapis.com/Instance",
        "networkInterfaces[].network",
        "compute.googleapis.com/Network",
        RelationshipType.RUNS_IN,
    ),
    GcpRelationshipRule(
        "compute.googleapis.com/Instance",
        "networkInterfaces[].subnetwork",
        "compute.googleapis.com/Subnetwork",
        RelationshipType.RUNS_IN,
    ),
    GcpRelationshipRule(
        "compute.googleapis.com/Instance",
        "disks[].source",
        "compute.googleapis.com/Disk",
        RelationshipType.ATTACHED_TO,
    ),
    GcpRelationshipRule(
        "compute.googleapis.com/Instance",
        "serviceAccounts[].email",
        "iam.googleapis.com/ServiceAccount",
        RelationshipType.USES,
    ),
    GcpRelationshipRule(
        "compute.googleapis.com/Subnetwork",
        "network",
        "compute.googleapis.com/Network",
        RelationshipType.RUNS_IN,
    ),
    GcpRelationshipRule(
        "compute.googleapis.com/Firewall",
        "network",
        "compute.googleapis.com/Network",
        RelationshipType.SECURES,
    ),
    GcpRelationshipRule(
        "container.googleapis.com/Cluster",
        "subnetwork",
        "compute.googleapis.com/Subnetwork",
        RelationshipType.RUNS_IN,
    ),
    GcpRelationshipRule(
        "container.googleapis.com/Cluster",
        "network",
        "compute.googleapis.com/Network",
        RelationshipType.RUNS_IN,
    ),
    GcpRelationshipRule(
        "cloudfunctions.googleapis.com/Function",
        "serviceAccountEmail",
        "iam.googleapis.com/ServiceAccount",
        RelationshipType.USES,
    ),
    GcpRelationshipRule(
        "pubsub.googleapis.com/Subscription",
        "topic",
        "pubsub.googleapis.com/Topic",
        RelationshipType.SUBSCRIBES_TO,
    ),
    GcpRelationshipRule(
        "sqladmin.googleapis.com/Instance",
        "settings.ipConfiguration.privateNetwork",
        "compute.googleapis.com/Network",
        RelationshipType.RUNS_IN,
    ),
    GcpRelationshipRule(
        "aiplatform.googleapis.com/Endpoint",
        "deployedModels[].model",
        "aiplatform.googleapis.com/Model",
        RelationshipType.DEPENDS_ON,
    ),
)

# Approximate on-demand monthly USD.
GCP_VM_COSTS = {
    "e2-micro": 6.11,
    "e2-small": 12.23,
    "e2-medium": 24.46,
    "e2-standard-2": 48.92,
    "e2-standard-4": 97.83,
    "e2-standard-8": 195.67,
    "n2-standard-2": 69.35,
    "n2-standard-4": 138.70,
    "n2-standard-8": 277.40,
    "n2-standard-16": 554.80,
    "c2-standard-4": 152.06,
    "c2-standard-8": 304.12,
    "a2-highgpu-1g": 2556.14,
    "a2-highgpu-8g": 20449.12,
    "a3-highgpu-8g": 28032.00,
    "g2-standard-4": 513.36,
    "g2-standard-8": 857.52,
}

GCP_SQL_COSTS = {
    "db-f1-micro": 8.61,
    "db-g1-small": 26.73,
    "db-n1-standard-1": 51.10,
    "db-n1-standard-2": 102.20,
    "db-n1-standard-4": 204.40,
}

GCP_TPU_COSTS = {
    "v2-8": 3285.00,
    "v3-8": 5840.00,
    "v4-8": 8974.80,
    "v5e-4": 4380.00,
}

GKE_MANAGEMENT_FEE = 73.0

_GPU_MACHINE_PREFIXES = ("a2-", "a3-", "g2-")

_STATUS_MAP = {
    "RUNNING": NodeStatus.RUNNING,
    "READY": NodeStatus.RUNNING,
    "ACTIVE": NodeStatus.RUNNING,
    "SERVING": NodeStatus.RUNNING,
    "TERMINATED": NodeStatus.STOPPED,
    "STOPPED": NodeStatus.STOPPED,
    "SUSPENDED": NodeStatus.STOPPED,
    "STAGING": NodeStatus.CREATING,
    "PROVISIONING": NodeStatus.CREATING,
    "CREATING": NodeStatus.CREATING,
    "STOPPING": NodeStatus.DELETING,
    "DELETING": NodeStatus.DELETING,
    "ERROR": NodeStatus.ERROR,
    "FAILED": NodeStatus.ERROR,
}

_ZONE_RE = re.compile(r"/zones/([^/]+)/")
_REGION_RE = re.compile(r"/regions/([^/]+)/")
_LOCATION_RE = re.compile(r"/locations/([^/]+)/")
_SELF_LINK_RE = re.compile(r"^https://([^/]+)\.googleapis\.com/(?:compute/v1/)?(.+)$")


def resolve_field(data: Any, path: str) -> list[Any]:
    """Collect the values at a dotted path, fanning out over `name[]` lists.

    Missing or mistyped intermediate values yield nothing rather than raising.
    """
    current = [data]
    for part in path.split("."):
        fan_out = part.endswith("[]")
        key = part[:-2] if fan_out else part
        nxt = []
        for item in current:
            if not isinstance(item, dict):
                continue
            value = item.get(key)
            if value is None:
                continue
            if fan_out:
                if isinstance(value, list):
                    nxt.extend(v for v in value if v is not None)
            else:
                nxt.append(value)
        current = nxt
    return current


def short_name(asset_name: str) -> str:
    """`//svc/projects/p/zones/z/instances/vm1` -> `vm1`."""
    return asset_name.rstrip("/").rsplit("/", 1)[-1]


def extract_location(asset: dict) -> str:
    """Region for an asset; zones are reduced to their region."""
    resource = asset.get("resource") or {}
    location = resource.get("location")
    name = asset.get("name", "")
    zone = _ZONE_RE.search(name)
    if isinstance(location, str) and location:
        return re.sub(r"-[a-z]$", "", location)
    if zone:
        return re.sub(r"-[a-z]$", "", zone.group(1))
    for pattern in (_REGION_RE, _LOCATION_RE):
        match = pattern.search(name)
        if match:
            return match.group(1)
    return "global"


def infer_status(data: dict) -> NodeStatus:
    raw = data.get("status") or data.get("state")
    if isinstance(raw, str):
        return _STATUS_MAP.get(raw.upper(), NodeStatus.RUNNING)
    return NodeStatus.RUNNING


class GcpAssetAdapter(DiscoveryAdapter):
    """Normalizes Cloud Asset Inventory records for one project."""

    provider = CloudProvider.GCP
    display_name = "Google Cloud Platform"

    def __init__(self, project_id: str, client: GcpAssetClient, max_workers: int = 4):
        self.project_id = project_id
        self.client = client
        self.max_workers = max_workers

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}"

    def supported_resource_types(self) -> list[ResourceType]:
        seen: dict[ResourceType, None] = {}
        for mapping in GCP_RESOURCE_MAPPINGS:
            seen.setdefault(mapping.resource_type, None)
        return list(seen)

    def health_check(self) -> bool:
        try:
            assets = self.client.list_assets(self.parent, ["compute.googleapis.com/Instance"])
        except Exception as exc:
            logger.warning("GCP health check failed: %s", exc)
            return False
        return isinstance(assets, list)

    def asset_types_for(self, options: DiscoverOptions | None) -> list[str]:
        if options is None or not options.resource_types:
            return [mapping.asset_type for mapping in GCP_RESOURCE_MAPPINGS]
        wanted = set(options.resource_types)
        return [m.asset_type for m in GCP_RESOURCE_MAPPINGS if m.resource_type in wanted]

    def discover(self, options: DiscoverOptions | None = None) -> DiscoveryResult:
        """List every mapped asset type concurrently and normalize the records."""
        started = time.perf_counter()
        tasks = [
            EnumerationTask(
                fetch=lambda asset_type=asset_type: self.client.list_assets(
                    self.parent, [asset_type]
                ),
                resource_type=asset_type,
            )
            for asset_type in self.asset_types_for(options)
        ]
        outcomes, errors = self.enumerate_concurrently(tasks, self.max_workers)

        assets = [asset for _task, batch in outcomes for asset in (batch or [])]
        nodes: list[GraphNodeInput] = []
        name_index: dict[str, str] = {}
        for asset in assets:
            mapping = _MAPPINGS_BY_TYPE.get(asset.get("assetType", ""))
            if mapping is None or not asset.get("name"):
                continue
            try:
                node = self.normalize_asset(asset, mapping)
            except ValidationError as e:
                errors.append(
                    DiscoveryError(
                        f"Skipped {asset.get('name')}: {e}".splitlines()[0], mapping.asset_type
                    )
                )
                continue
            nodes.append(node)
            name_index[asset["name"]] = node.id
            data = (asset.get("resource") or {}).get("data") or {}
            self_link = data.get("selfLink")
            if isinstance(self_link, str):
                name_index[self_link] = node.id

        edges: list[GraphEdgeInput] = []
        for asset in assets:
            source_id = name_index.get(asset.get("name", ""))
            if source_id is not None:
                edges.extend(self.extract_relationships(source_id, asset, name_index))

        nodes, edges = self.apply_options(nodes, edges, options)
        return DiscoveryResult(
            provider=self.provider,
            nodes=nodes,
            edges=edges,
            errors=errors,
            duration_ms=elapsed_ms(started),
        )

    # -- normalization ---------------------------------------------------------

    def normalize_asset(self, asset: dict, mapping: GcpResourceMapping) -> GraphNodeInput:
        data = (asset.get("resource") or {}).get("data") or {}
        if not isinstance(data, dict):
            data = {}
        tags = coerce_tags(data.get("labels"))
        metadata = self.extract_metadata(mapping, data)
        if mapping.ai_workload:
            metadata["aiWorkload"] = True

        name = tags.get("name") or data.get("name") or data.get("displayName")
        if not isinstance(name, str) or not name:
            name = short_name(asset["name"])
        elif "/" in name:
            name = short_name(name)

        created = data.get("creationTimestamp") or data.get("createTime")
        created_at = None
        if isinstance(created, str):
            try:
                created_at = datetime.fromisoformat(created.replace("Z", "+00:00"))
            except ValueError:
                logger.debug("Ignoring unparsable creation time %r", created)

        return GraphNodeInput(
            provider=CloudProvider.GCP,
            resource_type=mapping.resource_type,
            native_id=asset["name"],
            name=name,
            region=extract_location(asset),
            account=self.project_id,
            status=infer_status(data),
            tags=tags,
            metadata=metadata,
            cost_monthly=self.estimate_cost(mapping, data),
            owner=tags.get("owner") or tags.get("team"),
            created_at=created_at,
        )

    @staticmethod
    def extract_metadata(mapping: GcpResourceMapping, data: dict) -> dict[str, Any]:
        meta: dict[str, Any] = {}
        asset_type = mapping.asset_type

        if asset_type == "compute.googleapis.com/Instance":
            machine_type = data.get("machineType")
            if isinstance(machine_type, str) and machine_type:
                machine_type = machine_type.rsplit("/", 1)[-1]
                meta["machineType"] = machine_type
                if machine_type.startswith(_GPU_MACHINE_PREFIXES):
                    meta["isGpuInstance"] = True
                    meta["aiWorkload"] = True
            accelerators = data.get("guestAccelerators")
            if isinstance(accelerators, list) and accelerators:
                meta["isGpuInstance"] = True
                meta["aiWorkload"] = True
                meta["accelerators"] = [
                    {"type": acc.get("acceleratorType"), "count": acc.get("acceleratorCount")}
                    for acc in accelerators
                    if isinstance(acc, dict)
                ]
        elif asset_type == "compute.googleapis.com/Network":
            # Legacy networks carry a single range; subnet-mode networks carry none.
            if isinstance(data.get("IPv4Range"), str):
                meta["cidrBlock"] = data["IPv4Range"]
        elif asset_type == "compute.googleapis.com/Subnetwork":
            if isinstance(data.get("ipCidrRange"), str):
                meta["cidrBlock"] = data["ipCidrRange"]
        elif asset_type == "container.googleapis.com/Cluster":
            for key, target in (
                ("currentMasterVersion", "masterVersion"),
                ("currentNodeVersion", "nodeVersion"),
            ):
                if data.get(key):
                    meta[target] = data[key]
            pools = data.get("nodePools")
            if isinstance(pools, list):
                meta["nodePoolCount"] = len(pools)
                meta["totalNodes"] = sum(
                    int(pool.get("initialNodeCount") or 0)
                    for pool in pools
                    if isinstance(pool, dict)
                )
        elif asset_type == "sqladmin.googleapis.com/Instance":
            settings = data.get("settings")
            if isinstance(settings, dict):
                for key in ("tier", "availabilityType"):
                    if settings.get(key):
                        meta[key] = settings[key]
            if data.get("databaseVersion"):
                meta["databaseVersion"] = data["databaseVersion"]
        elif asset_type == "storage.googleapis.com/Bucket":
            if data.get("storageClass"):
                meta["storageClass"] = data["storageClass"]
            meta["bucketUri"] = f"gs://{data.get('name') or ''}".rstrip("/")
        elif asset_type == "aiplatform.googleapis.com/Endpoint":
            deployed = data.get("deployedModels")
            if isinstance(deployed, list):
                meta["deployedModelCount"] = len(deployed)
                models = resolve_field(data, "deployedModels[].model")
                if models:
                    meta["modelId"] = short_name(str(models[0]))
        elif asset_type == "aiplatform.googleapis.com/Model":
            if data.get("displayName"):
                meta["modelName"] = data["displayName"]
        elif asset_type == "tpu.googleapis.com/Node":
            if data.get("acceleratorType"):
                meta["tpuType"] = data["acceleratorType"]
            meta["isGpuInstance"] = True
        elif asset_type == "dns.googleapis.com/ManagedZone":
            if data.get("dnsName"):
                meta["dnsName"] = data["dnsName"]
            records = data.get("records")
            if isinstance(records, list):
                meta["records"] = records
        elif asset_type == "iam.googleapis.com/WorkloadIdentityPool":
            meta["identityPool"] = True
            providers = data.get("providers")
            if isinstance(providers, list):
                meta["federatedProviders"] = providers
        return meta

    @staticmethod
    def estimate_cost(mapping: GcpResourceMapping, data: dict) -> float | None:
        asset_type = mapping.asset_type
        if asset_type == "compute.googleapis.com/Instance":
            machine_type = str(data.get("machineType") or "").rsplit("/", 1)[-1].lower()
            return GCP_VM_COSTS.get(machine_type)
        if asset_type == "sqladmin.googleapis.com/Instance":
            settings = data.get("settings") if isinstance(data.get("settings"), dict) else {}
            return GCP_SQL_COSTS.get(str(settings.get("tier") or "").lower())
        if asset_type == "redis.googleapis.com/Instance":
            size = data.get("memorySizeGb") or 1
            return float(size) * 48 if isinstance(size, (int, float)) else None
        if asset_type == "container.googleapis.com/Cluster":
            total = GKE_MANAGEMENT_FEE
            pools = data.get("nodePools")
            if isinstance(pools, list):
                for pool in pools:
                    if not isinstance(pool, dict):
                        continue
                    config = pool.get("config") if isinstance(pool.get("config"), dict) else {}
                    per_vm = GCP_VM_COSTS.get(str(config.get("machineType") or "").lower())
                    if per_vm:
                        total += per_vm * int(pool.get("initialNodeCount") or 1)
            return total
        if asset_type == "tpu.googleapis.com/Node":
            return GCP_TPU_COSTS.get(str(data.get("acceleratorType") or "").lower())
        return None

    # -- relationships ---------------------------------------------------------

    def extract_relationships(
        self, source_id: str, asset: dict, name_index: dict[str, str]
    ) -> list[GraphEdgeInput]:
        data = (asset.get("resource") or {}).get("data") or {}
        edges = []
        for rule in GCP_RELATIONSHIP_RULES:
            if rule.source_type != asset.get("assetType"):
                continue
            for value in resolve_field(data, rule.field):
                target_id = resolve_reference(str(value), name_index)
                if target_id is None or target_id == source_id:
                    continue
                edges.append(
                    GraphEdgeInput(
                        source_node_id=source_id,
                        target_node_id=target_id,
                        relationship_type=rule.relationship,
                        confidence=1.0,
                        discovered_via=DiscoveryMethod.API_FIELD,
                        metadata={"field": rule.field},
                    )
                )
        return edges


def resolve_reference(ref: str, name_index: dict[str, str]) -> str | None:
    """Resolve a selfLink, full resource name or partial path to a node id."""
    if ref in name_index:
        return name_index[ref]
    match = _SELF_LINK_RE.match(ref)
    if match:
        service, path = match.groups()
        found = name_index.get(f"//{service}.googleapis.com/{path}")
        if found:
            return found
    for name, node_id in name_index.items():
        if name.endswith(f"/{ref}"):
            return node_id
    return None
