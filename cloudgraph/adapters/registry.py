"""Registry of discovery adapters keyed by provider."""

from ..schema.types import CloudProvider
from .base import DiscoveryAdapter


class AdapterRegistry:
    """Holds at most one adapter per provider."""

    def __init__(self, adapters: list[DiscoveryAdapter] | None = None):
        self._adapters: dict[CloudProvider, DiscoveryAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: DiscoveryAdapter) -> None:
        """Add an adapter, replacing any previous one for the same provider."""
        self._adapters[CloudProvider(adapter.provider)] = adapter

    def get(self, provider: CloudProvider | str) -> DiscoveryAdapter | None:
        return self._adapters.get(CloudProvider(provider))

    def get_all(self) -> list[DiscoveryAdapter]:
        return list(self._adapters.values())

    def providers(self) -> list[CloudProvider]:
        return list(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, provider: object) -> bool:
        try:
            return CloudProvider(provider) in self._adapters
        except ValueError:
            return False
