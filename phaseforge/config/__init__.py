"""Configuration management for PhaseForge."""

from .loader import (
    create_default_config,
    get_config_paths,
    load_config,
    save_config,
    validate_config_file,
)
from .models import (
    IntegrationConfig,
    LoggingConfig,
    PhaseForgeConfig,
    PoolConfig,
    StateConfig,
    WorkerConfig,
    parse_duration_seconds,
)

__all__ = [
    "PhaseForgeConfig",
    "PoolConfig",
    "IntegrationConfig",
    "WorkerConfig",
    "LoggingConfig",
    "StateConfig",
    "parse_duration_seconds",
    "load_config",
    "save_config",
    "create_default_config",
    "validate_config_file",
    "get_config_paths",
]
