"""Pydantic models for cloudgraph configuration."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class InferenceConfig(BaseModel):
    """Confidence constants and matching knobs for relationship inference.

    The confidence values are observable behavior: changing one changes the
    edges stored for an unchanged environment.
    """

    naming_mutual_confidence: float = Field(default=0.85, ge=0, le=1)
    naming_one_way_confidence: float = Field(default=0.6, ge=0, le=1)
    cidr_overlap_confidence: float = Field(default=0.5, ge=0, le=1)
    dns_confidence: float = Field(default=0.75, ge=0, le=1)
    federated_identity_confidence: float = Field(default=0.7, ge=0, le=1)
    ai_model_match_confidence: float = Field(default=0.8, ge=0, le=1)
    ai_owner_match_confidence: float = Field(default=0.5, ge=0, le=1)
    ai_reference_confidence: float = Field(default=0.7, ge=0, le=1)
    shared_storage_confidence: float = Field(default=0.7, ge=0, le=1)
    structural_confidence: float = Field(default=1.0, ge=0, le=1)

    peering_tag_keys: list[str] = Field(
        default_factory=lambda: ["peering", "peer", "vpn-peer", "peered-with"]
    )
    workload_flags: list[str] = Field(
        default_factory=lambda: ["aiWorkload", "isAiWorkload"]
    )
    model_keys: list[str] = Field(
        default_factory=lambda: ["modelName", "modelId", "model", "endpointName"]
    )
    min_reference_length: int = Field(default=3, ge=1)
    enabled_rules: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_rules(cls, data: dict) -> dict:
        """Accept a single rule id for enabled_rules."""
        if isinstance(data, dict):
            rules = data.get("enabled_rules")
            if isinstance(rules, str):
                data["enabled_rules"] = [rules]
        return data

    def rule_enabled(self, rule_id: str) -> bool:
        return self.enabled_rules is None or rule_id in self.enabled_rules


class RetentionConfig(BaseModel):
    """What happens to nodes after they are marked disappeared."""

    policy: Literal["keep", "delete-after"] = "keep"
    delete_after_days: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def require_age(self) -> "RetentionConfig":
        if self.policy == "delete-after" and self.delete_after_days is None:
            raise ValueError("delete_after_days is required for the delete-after policy")
        return self


class EngineConfig(BaseModel):
    """Sync orchestrator and traversal settings."""

    max_traversal_depth: int = Field(default=8, ge=1)
    max_workers: int = Field(default=4, ge=1)
    stale_after_seconds: float = Field(default=0, ge=0)
    mark_disappeared_on_partial: bool = True
    prune_stale_edges: bool = True
    edge_stale_after_seconds: float = Field(default=7 * 24 * 3600, ge=0)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)


class StorageConfig(BaseModel):
    """Which storage backend to open."""

    backend: Literal["memory", "sqlite"] = "memory"
    path: str | None = None

    @model_validator(mode="after")
    def require_path(self) -> "StorageConfig":
        if self.backend == "sqlite" and not self.path:
            raise ValueError("path is required for the sqlite backend")
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None


class AdapterConfig(BaseModel):
    """A discovery adapter declaration."""

    type: Literal["inventory"] = "inventory"
    path: str
    provider: str | None = None


class AppConfig(BaseModel):
    """Root configuration document."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    adapters: list[AdapterConfig] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_adapters(cls, data: dict) -> dict:
        """Accept a bare path string as shorthand for an inventory adapter."""
        if not isinstance(data, dict):
            return data
        adapters = data.get("adapters")
        if isinstance(adapters, list):
            data["adapters"] = [
                {"type": "inventory", "path": item} if isinstance(item, str) else item
                for item in adapters
            ]
        return data
