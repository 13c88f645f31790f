"""Storage-layer exceptions."""


class StorageError(Exception):
    """Raised when a read or write against the persistence layer fails."""


class NodeNotFoundError(StorageError):
    """Raised when an operation references a node that is not stored."""

    def __init__(self, node_id: str, message: str | None = None):
        self.node_id = node_id
        super().__init__(message or f"Node not found: {node_id}")


class GroupNotFoundError(StorageError):
    """Raised when an operation references a group that is not stored."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group not found: {group_id}")


class ReadOnlyStorageError(StorageError):
    """Raised on a write against a storage opened read-only."""
