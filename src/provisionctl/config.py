"""
Runtime settings for provisionctl.

Uses Pydantic BaseSettings for environment variable integration
and validation.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (PROVISIONCTL_*)
3. .env file
4. Default values

There is no process-wide settings object: callers build settings with
load_settings() and hand them to EngineContext.from_settings().

Example:
    from provisionctl.config import load_settings

    settings = load_settings(data_dir="/var/lib/provisionctl")
    print(settings.tool_timeout_seconds)  # From PROVISIONCTL_TOOL_TIMEOUT_SECONDS or default
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from provisionctl.contracts.timeouts import (
    DEFAULT_MAX_RETRIES,
    READINESS_DEFAULT_TIMEOUT_S,
    READINESS_INITIAL_DELAY_S,
    READINESS_MAX_DELAY_S,
    TOOL_DEFAULT_TIMEOUT_S,
)
from provisionctl.errors import ConfigError

__all__ = ["ProvisionctlSettings", "load_settings", "parse_strict_bool"]


def parse_strict_bool(value: str, setting: str) -> bool:
    """
    Parse a flag that accepts only the literals "true" and "false".

    Raises:
        ConfigError: For any other value (including "True", "1", "yes")
    """
    if value == "true":
        return True
    if value == "false":
        return False
    raise ConfigError(f"{setting} must be exactly 'true' or 'false', got {value!r}")


class ProvisionctlSettings(BaseSettings):
    """
    Settings for the lifecycle engine and its adapters.

    All settings can be overridden via environment variables
    prefixed with PROVISIONCTL_.

    Example:
        export PROVISIONCTL_DATA_DIR=/var/lib/provisionctl
        export PROVISIONCTL_SKIP_FIREWALL=true
    """

    model_config = SettingsConfigDict(
        env_prefix="PROVISIONCTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: str = Field(
        default="./data",
        description="Directory holding environment records and OpenTofu state",
    )
    build_dir: str = Field(
        default="./build",
        description="Directory for rendered, disposable artifacts",
    )

    # External tools
    tofu_binary: str = Field(
        default="tofu",
        description="OpenTofu executable",
    )
    ansible_playbook_binary: str = Field(
        default="ansible-playbook",
        description="ansible-playbook executable",
    )
    tool_timeout_seconds: float = Field(
        default=TOOL_DEFAULT_TIMEOUT_S,
        gt=0,
        description="Timeout for a single external tool invocation",
    )

    # Readiness polling
    readiness_timeout_seconds: float = Field(
        default=READINESS_DEFAULT_TIMEOUT_S,
        gt=0,
        description="Budget for a new host to accept SSH connections",
    )
    readiness_initial_delay_seconds: float = Field(
        default=READINESS_INITIAL_DELAY_S,
        ge=0,
        description="First delay between reachability probes",
    )
    readiness_max_delay_seconds: float = Field(
        default=READINESS_MAX_DELAY_S,
        gt=0,
        description="Upper bound for the delay between probes",
    )

    # Configuration steps
    cache_update_attempts: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=1,
        description="Attempts for the package cache update step",
    )
    skip_cache_update: str = Field(
        default="false",
        description="Skip the package cache update step ('true' or 'false')",
    )
    skip_firewall: str = Field(
        default="false",
        description="Skip the firewall step ('true' or 'false')",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for provisionctl",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format (json for log shippers, text for console)",
    )

    @field_validator("data_dir", "build_dir")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in paths."""
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("skip_cache_update", "skip_firewall")
    @classmethod
    def validate_flag(cls, v: str) -> str:
        if v not in ("true", "false"):
            raise ValueError(f"must be exactly 'true' or 'false', got {v!r}")
        return v

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def build_path(self) -> Path:
        return Path(self.build_dir)

    @property
    def skip_cache_update_enabled(self) -> bool:
        return parse_strict_bool(self.skip_cache_update, "skip_cache_update")

    @property
    def skip_firewall_enabled(self) -> bool:
        return parse_strict_bool(self.skip_firewall, "skip_firewall")


def load_settings(**overrides) -> ProvisionctlSettings:
    """
    Build a fresh settings instance.

    Args:
        **overrides: Override any setting

    Raises:
        ConfigError: If a setting is invalid
    """
    try:
        return ProvisionctlSettings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e
