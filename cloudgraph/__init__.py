"""Provider-agnostic knowledge graph of cloud infrastructure."""

__version__ = "0.1.0"
