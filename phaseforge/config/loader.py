"""Configuration loading and management.

Configuration is layered; each layer overrides the keys it sets in the ones
before it::

    built-in defaults <- global <- project <- explicit file

The global file lives under ``$XDG_CONFIG_HOME/phaseforge`` (or
``~/.config/phaseforge``); the project file is ``.phaseforge/config.yaml`` in
the current directory or the nearest parent that has one.
"""

import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import yaml
from pydantic import ValidationError

from phaseforge.config.models import PhaseForgeConfig
from phaseforge.core.exceptions import ConfigurationError

CONFIG_DIR_NAME = ".phaseforge"
CONFIG_FILE_NAME = "config.yaml"

PathLike = Union[str, Path]


def load_config(
    config_path: Optional[PathLike] = None,
    project_config_path: Optional[PathLike] = None,
    global_config_path: Optional[PathLike] = None,
) -> PhaseForgeConfig:
    """Load the layered configuration.

    Args:
        config_path: Explicit file applied on top of every other layer
        project_config_path: Project file to use instead of searching for one
        global_config_path: Global file to use instead of the XDG location

    Returns:
        Validated configuration with environment references resolved

    Raises:
        ConfigurationError: If a layer is unreadable or the result is invalid
    """
    explicit = Path(config_path) if config_path else None
    if explicit is not None and not explicit.exists():
        raise ConfigurationError(f"Configuration file not found: {explicit}")

    layers = [
        Path(global_config_path) if global_config_path else _get_global_config_path(),
        Path(project_config_path) if project_config_path else _get_project_config_path(),
        explicit,
    ]

    merged: Dict[str, Any] = {}
    for data in _read_layers(layers):
        merged = _deep_merge(merged, data)

    try:
        return PhaseForgeConfig(**merged).resolve_env_vars()
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def save_config(config: PhaseForgeConfig, config_path: Path) -> None:
    """Write a configuration as YAML, creating parent directories.

    Raises:
        ConfigurationError: If the file cannot be written
    """
    document = yaml.safe_dump(
        config.model_dump(exclude_none=True, mode="json"),
        default_flow_style=False,
        sort_keys=False,
        indent=2,
        allow_unicode=True,
    )
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(document, encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Failed to save configuration to {config_path}: {e}"
        ) from e


def create_default_config() -> PhaseForgeConfig:
    """Create a default configuration."""
    return PhaseForgeConfig()


def validate_config_file(config_path: Path) -> Dict[str, Any]:
    """Check a single configuration file on its own, without layering.

    Returns:
        ``{"valid": bool, "errors": [...], "config": dict or None}``

    Raises:
        ConfigurationError: If the file is missing or is not a YAML mapping
    """
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        config = PhaseForgeConfig(**_read_mapping(config_path))
    except ValidationError as e:
        return {"valid": False, "errors": [str(err) for err in e.errors()], "config": None}
    return {"valid": True, "errors": [], "config": config.model_dump()}


def get_config_paths() -> Dict[str, Optional[Path]]:
    """Locations of the global and project configuration files."""
    return {"global": _get_global_config_path(), "project": _get_project_config_path()}


def _get_global_config_path() -> Optional[Path]:
    base = os.getenv("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "phaseforge" / CONFIG_FILE_NAME


def _get_project_config_path() -> Optional[Path]:
    cwd = Path.cwd()
    for directory in (cwd, *cwd.parents):
        if (directory / CONFIG_DIR_NAME).is_dir():
            return directory / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    return None


def _read_layers(paths: List[Optional[Path]]) -> Iterator[Dict[str, Any]]:
    for path in paths:
        if path is not None and path.exists():
            yield _read_mapping(path)


def _read_mapping(path: Path) -> Dict[str, Any]:
    """Parse a YAML file that must hold a mapping (an empty file is ``{}``)."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {path} must contain a YAML object, got {type(data).__name__}"
        )
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged
