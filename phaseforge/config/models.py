"""Configuration models for PhaseForge."""

import os
import re
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

_DURATION_PATTERN = r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$"


def parse_duration_seconds(value: str) -> int:
    """Parse a duration like '30m', '90s' or '1h30m' into seconds.

    Raises:
        ValueError: If the format is invalid or the duration is zero
    """
    match = re.match(_DURATION_PATTERN, value.strip().lower())
    if not match or not any(match.groups()):
        raise ValueError(
            f"Invalid duration '{value}'. Use formats like '30m', '90s', '1h30m'"
        )

    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    total = hours * 3600 + minutes * 60 + seconds
    if total == 0:
        raise ValueError("Duration must be greater than zero")
    return total


class PoolConfig(BaseModel):
    """Worker pool configuration."""

    max_workers: int = Field(default=8, description="Threads available to workers")
    build_timeout: str = Field(default="30m", description="Timeout for a build call")
    validate_timeout: str = Field(default="10m", description="Timeout for a validate call")
    fix_timeout: str = Field(default="20m", description="Timeout for a fix call")

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        """Validate worker count."""
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        if v > 64:
            raise ValueError("max_workers cannot exceed 64")
        return v

    @field_validator("build_timeout", "validate_timeout", "fix_timeout")
    @classmethod
    def validate_timeouts(cls, v: str) -> str:
        """Validate timeout format."""
        parse_duration_seconds(v)
        return v

    def timeout_seconds(self, role: str) -> int:
        """Timeout in seconds for a work role ('build', 'validate', 'fix')."""
        return parse_duration_seconds(getattr(self, f"{role}_timeout"))


class IntegrationConfig(BaseModel):
    """Integration stage configuration."""

    name: str = Field(default="integration", description="Name of the integration unit")
    scope: str = Field(
        default="Wire together the outputs of all modules",
        description="Scope handed to workers for the integration unit",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate integration unit name."""
        if not v.strip():
            raise ValueError("Integration name cannot be empty")
        return v.strip()


class WorkerConfig(BaseModel):
    """Shell command worker configuration."""

    build_command: Optional[str] = Field(default=None, description="Command run to build")
    validate_command: Optional[str] = Field(
        default=None, description="Command run to validate"
    )
    fix_command: Optional[str] = Field(default=None, description="Command run to fix")
    working_dir: str = Field(default=".", description="Working directory")

    @property
    def is_configured(self) -> bool:
        return bool(self.build_command and self.validate_command and self.fix_command)

    def get_working_dir(self) -> Path:
        """Get the worker working directory as a Path object."""
        return Path(self.working_dir).expanduser().resolve()


class LoggingConfig(BaseModel):
    """Activity logging configuration."""

    enabled: bool = Field(default=True, description="Write the activity log")
    level: str = Field(default="INFO", description="Log level")
    output_dir: str = Field(default=".phaseforge/logs", description="Log output directory")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARN", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()


class StateConfig(BaseModel):
    """Module state persistence configuration."""

    persist: bool = Field(default=False, description="Persist module states to disk")
    state_dir: str = Field(default=".phaseforge/state", description="State directory")


class PhaseForgeConfig(BaseModel):
    """Main PhaseForge configuration."""

    pool: PoolConfig = Field(default_factory=PoolConfig, description="Worker pool")
    integration: IntegrationConfig = Field(
        default_factory=IntegrationConfig, description="Integration stage"
    )
    worker: WorkerConfig = Field(
        default_factory=WorkerConfig, description="Shell command worker"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    state: StateConfig = Field(default_factory=StateConfig, description="State persistence")

    def resolve_env_vars(self) -> "PhaseForgeConfig":
        """Resolve environment variables in configuration values."""
        config_dict = self.model_dump()
        resolved_dict = _resolve_env_vars_recursive(config_dict)
        return PhaseForgeConfig(**resolved_dict)

    def get_log_dir(self) -> Path:
        """Get the log directory as a Path object."""
        return Path(self.logging.output_dir).expanduser().resolve()

    def get_state_dir(self) -> Path:
        """Get the state directory as a Path object."""
        return Path(self.state.state_dir).expanduser().resolve()


def _resolve_env_vars_recursive(obj: Any) -> Any:
    """Recursively resolve environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # Pattern for ${VAR_NAME} or ${VAR_NAME:default_value}
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replace_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
