"""Domain records and the user configuration schema."""

from provisionctl.models.config import (
    EnvironmentConfig,
    HetznerProviderConfig,
    LxdProviderConfig,
    SshCredentials,
    WorkloadConfig,
    load_environment_config,
)
from provisionctl.models.environment import (
    SCHEMA_VERSION,
    Environment,
    HistoryEntry,
    Instance,
    Phase,
    ProviderKind,
    validate_environment_name,
)

__all__ = [
    "SCHEMA_VERSION",
    "Environment",
    "HistoryEntry",
    "Instance",
    "Phase",
    "ProviderKind",
    "validate_environment_name",
    "EnvironmentConfig",
    "HetznerProviderConfig",
    "LxdProviderConfig",
    "SshCredentials",
    "WorkloadConfig",
    "load_environment_config",
]
