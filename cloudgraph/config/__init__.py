"""Configuration loading and validation."""

from .errors import ConfigLoadError, ConfigValidationError
from .loader import load_yaml, parse_config, parse_config_from_string
from .models import (
    AdapterConfig,
    AppConfig,
    EngineConfig,
    InferenceConfig,
    LoggingConfig,
    RetentionConfig,
    StorageConfig,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "load_yaml",
    "parse_config",
    "parse_config_from_string",
    "AdapterConfig",
    "AppConfig",
    "EngineConfig",
    "InferenceConfig",
    "LoggingConfig",
    "RetentionConfig",
    "StorageConfig",
]
