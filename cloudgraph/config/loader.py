"""Reading cloudgraph's YAML files: the app configuration and inventories.

Both file kinds share `load_yaml`; only the configuration is validated here.
Inventory documents are interpreted by the inventory adapter.
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from .errors import ConfigLoadError, ConfigValidationError
from .models import AppConfig


def _root_mapping(data, source: str | None = None) -> dict:
    """The top-level mapping of a YAML document; empty documents give {}."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Expected YAML mapping at root, got {type(data).__name__}", source
        )
    return data


def load_yaml(path: str | Path) -> dict:
    """Read a config or inventory file into its top-level mapping.

    Args:
        path: A cloudgraph config file or an inventory file.

    Returns:
        The document's mapping; an empty file yields an empty dict.

    Raises:
        ConfigLoadError: If the file is missing, unreadable, not YAML, or
            its root is not a mapping.
    """
    path = Path(path)
    source = str(path)

    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}", source)
    if not path.is_file():
        raise ConfigLoadError(f"Not a file: {path}", source)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML: {e}", source) from e
    except OSError as e:
        raise ConfigLoadError(f"Cannot read file: {e}", source) from e

    return _root_mapping(data, source)


def _anchor(value: str, base: Path) -> str:
    path = Path(value)
    return value if path.is_absolute() else str(base / path)


def parse_config(path: str | Path) -> AppConfig:
    """Load and validate the app configuration.

    Inventory paths and the SQLite database path are taken relative to the
    config file's directory, so a config can be run from anywhere.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed.
        ConfigValidationError: If the data fails validation.
    """
    path = Path(path)
    config = _validate(load_yaml(path))
    base = path.parent
    for adapter in config.adapters:
        adapter.path = _anchor(adapter.path, base)
    if config.storage.path and config.storage.path != ":memory:":
        config.storage.path = _anchor(config.storage.path, base)
    return config


def parse_config_from_string(yaml_string: str) -> AppConfig:
    """Validate configuration given inline, e.g. from tests or an env var.

    Paths are left as written.

    Raises:
        ConfigLoadError: If the YAML cannot be parsed.
        ConfigValidationError: If the data fails validation.
    """
    try:
        data = yaml.safe_load(yaml_string)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML: {e}") from e
    return _validate(_root_mapping(data))


def _validate(data: dict) -> AppConfig:
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        errors = [
            {
                "loc": ".".join(str(x) for x in err["loc"]),
                "msg": err["msg"],
                "type": err["type"],
            }
            for err in e.errors()
        ]
        raise ConfigValidationError(
            f"Configuration has {len(errors)} invalid setting(s)", errors
        ) from e
