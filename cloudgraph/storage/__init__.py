"""Graph storage: the backend contract and its implementations."""

from .base import EdgeUpsertResult, GraphStorage, NodeUpsertResult
from .errors import GroupNotFoundError, NodeNotFoundError, ReadOnlyStorageError, StorageError
from .memory import InMemoryGraphStorage
from .sqlite import SQLiteGraphStorage


def open_storage(backend: str = "memory", path: str | None = None, clock=None) -> GraphStorage:
    """Create and initialize a storage backend by name.

    Args:
        backend: "memory" or "sqlite".
        path: Database file for the sqlite backend.
        clock: Optional time source.

    Raises:
        StorageError: If the backend is unknown or cannot be opened.
    """
    if backend == "memory":
        storage = InMemoryGraphStorage(clock=clock)
    elif backend == "sqlite":
        if not path:
            raise StorageError("The sqlite backend requires a database path")
        storage = SQLiteGraphStorage(path, clock=clock)
    else:
        raise StorageError(f"Unknown storage backend: {backend}")
    storage.initialize()
    return storage


__all__ = [
    "EdgeUpsertResult",
    "GraphStorage",
    "NodeUpsertResult",
    "GroupNotFoundError",
    "NodeNotFoundError",
    "ReadOnlyStorageError",
    "StorageError",
    "InMemoryGraphStorage",
    "SQLiteGraphStorage",
    "open_storage",
]
