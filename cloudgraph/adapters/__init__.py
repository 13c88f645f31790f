"""Discovery adapters: the per-provider boundary of the graph."""

from .base import (
    AdapterError,
    DiscoverOptions,
    DiscoveryAdapter,
    DiscoveryError,
    DiscoveryResult,
    EnumerationTask,
)
from .gcp import GcpAssetAdapter
from .inventory import InventoryAdapter
from .registry import AdapterRegistry

__all__ = [
    "AdapterError",
    "DiscoverOptions",
    "DiscoveryAdapter",
    "DiscoveryError",
    "DiscoveryResult",
    "EnumerationTask",
    "GcpAssetAdapter",
    "InventoryAdapter",
    "AdapterRegistry",
]
