"""Enumerations shared by every layer of the knowledge graph."""

from enum import Enum


class CloudProvider(str, Enum):
    """Canonical cloud provider identifiers."""

    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    KUBERNETES = "kubernetes"
    CUSTOM = "custom"

    # Hybrid / edge providers
    AZURE_ARC = "azure-arc"
    GDC = "gdc"
    VMWARE = "vmware"
    NUTANIX = "nutanix"


class ResourceType(str, Enum):
    """Abstract resource categories every adapter normalizes into."""

    COMPUTE = "compute"
    STORAGE = "storage"
    NETWORK = "network"
    DATABASE = "database"
    CACHE = "cache"
    QUEUE = "queue"
    FUNCTION = "function"
    SERVERLESS_FUNCTION = "serverless-function"
    CONTAINER = "container"
    CLUSTER = "cluster"
    LOAD_BALANCER = "load-balancer"
    DNS = "dns"
    CERTIFICATE = "certificate"
    SECRET = "secret"
    POLICY = "policy"
    IDENTITY = "identity"
    VPC = "vpc"
    SUBNET = "subnet"
    SECURITY_GROUP = "security-group"
    IAM_ROLE = "iam-role"
    NAT_GATEWAY = "nat-gateway"
    API_GATEWAY = "api-gateway"
    CDN = "cdn"
    TOPIC = "topic"
    STREAM = "stream"
    CUSTOM = "custom"

    # Hybrid / edge
    HYBRID_MACHINE = "hybrid-machine"
    CONNECTED_CLUSTER = "connected-cluster"
    CUSTOM_LOCATION = "custom-location"
    OUTPOST = "outpost"
    EDGE_SITE = "edge-site"
    HCI_CLUSTER = "hci-cluster"
    FLEET = "fleet"


class NodeStatus(str, Enum):
    """Canonical resource status."""

    RUNNING = "running"
    STOPPED = "stopped"
    PENDING = "pending"
    CREATING = "creating"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"
    UNKNOWN = "unknown"
    DISAPPEARED = "disappeared"


class RelationshipType(str, Enum):
    """Edge types, named source -> verb -> target."""

    RUNS_IN = "runs-in"
    CONTAINS = "contains"
    SECURED_BY = "secured-by"
    SECURES = "secures"
    ROUTES_TO = "routes-to"
    RECEIVES_FROM = "receives-from"
    TRIGGERS = "triggers"
    TRIGGERED_BY = "triggered-by"
    READS_FROM = "reads-from"
    WRITES_TO = "writes-to"
    STORES_IN = "stores-in"
    USES = "uses"
    USED_BY = "used-by"
    ATTACHED_TO = "attached-to"
    DEPENDS_ON = "depends-on"
    DEPENDED_ON_BY = "depended-on-by"
    REPLICATES_TO = "replicates-to"
    REPLICATES = "replicates"
    PEERS_WITH = "peers-with"
    MEMBER_OF = "member-of"
    LOAD_BALANCES = "load-balances"
    RESOLVES_TO = "resolves-to"
    ENCRYPTS_WITH = "encrypts-with"
    AUTHENTICATED_BY = "authenticated-by"
    PUBLISHES_TO = "publishes-to"
    SUBSCRIBES_TO = "subscribes-to"
    MONITORS = "monitors"
    MONITORED_BY = "monitored-by"
    LOGS_TO = "logs-to"
    RECEIVES_LOGS_FROM = "receives-logs-from"
    BACKED_BY = "backed-by"
    BACKS = "backs"
    ALIASES = "aliases"
    BACKS_UP = "backs-up"
    CONNECTS_VIA = "connects-via"
    EXPOSES = "exposes"
    INHERITS_FROM = "inherits-from"
    CUSTOM = "custom"

    # Hybrid / edge
    MANAGED_BY = "managed-by"
    HOSTED_ON = "hosted-on"
    MEMBER_OF_FLEET = "member-of-fleet"
    DEPLOYED_AT = "deployed-at"
    CONNECTED_TO = "connected-to"

    @property
    def is_symmetric(self) -> bool:
        """Whether A-rel->B and B-rel->A denote the same relationship."""
        return self in SYMMETRIC_RELATIONSHIPS


# Stored once per unordered node pair.
SYMMETRIC_RELATIONSHIPS = frozenset(
    {
        RelationshipType.PEERS_WITH,
        RelationshipType.CONNECTED_TO,
    }
)


class DiscoveryMethod(str, Enum):
    """How a relationship was discovered."""

    CONFIG_SCAN = "config-scan"
    API_FIELD = "api-field"
    RUNTIME_TRACE = "runtime-trace"
    IAC_PARSE = "iac-parse"
    EVENT_STREAM = "event-stream"
    MANUAL = "manual"


class ChangeType(str, Enum):
    """Kinds of entries in the change ledger."""

    NODE_CREATED = "node-created"
    NODE_UPDATED = "node-updated"
    NODE_DELETED = "node-deleted"
    NODE_DISAPPEARED = "node-disappeared"
    NODE_DRIFTED = "node-drifted"
    EDGE_CREATED = "edge-created"
    EDGE_DELETED = "edge-deleted"
    COST_CHANGED = "cost-changed"


class DetectionMethod(str, Enum):
    """How a change was detected."""

    SYNC = "sync"
    WEBHOOK = "webhook"
    DRIFT_SCAN = "drift-scan"
    EVENT_STREAM = "event-stream"
    MANUAL = "manual"


class GroupType(str, Enum):
    """Kinds of logical groupings."""

    APPLICATION = "application"
    SERVICE = "service"
    STACK = "stack"
    TEAM = "team"
    ENVIRONMENT = "environment"
    COST_CENTER = "cost-center"
    VPC = "vpc"
    REGION = "region"
    ACCOUNT = "account"
    CUSTOM = "custom"


class SyncStatus(str, Enum):
    """Lifecycle of one discovery cycle."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class TraversalDirection(str, Enum):
    """Direction for neighbor expansion.

    Upstream follows edges where the node is the target, downstream follows
    edges where the node is the source.
    """

    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"
    BOTH = "both"


class UpsertOutcome(str, Enum):
    """What an upsert did to the stored entity."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
