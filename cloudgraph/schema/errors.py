"""Schema-related exceptions."""


class SchemaError(Exception):
    """Base class for data model errors."""


class InvalidIdentifierError(SchemaError):
    """Raised when a deterministic id cannot be built from its components."""

    def __init__(self, message: str, components: dict | None = None):
        self.components = components or {}
        super().__init__(message)
