"""
User configuration schema.

An environment is declared in a JSON or YAML file and validated with pydantic
before `create`. The provider section is a tagged union keyed on `provider`,
so each backend only accepts the fields it understands.

Example (YAML):
    environment:
      name: dev
    ssh_credentials:
      private_key_path: ~/.ssh/id_ed25519
      public_key_path: ~/.ssh/id_ed25519.pub
    provider:
      provider: lxd
      profile_name: provisionctl-dev
    workload:
      image: torrust/tracker:develop
      ports: ["6969/udp", "7070", "1212"]
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from provisionctl.errors import ConfigError
from provisionctl.models.environment import ProviderKind, validate_environment_name

logger = logging.getLogger(__name__)

__all__ = [
    "EnvironmentSection",
    "SshCredentials",
    "LxdProviderConfig",
    "HetznerProviderConfig",
    "WorkloadConfig",
    "EnvironmentConfig",
    "load_environment_config",
]

_PORT_PATTERN = re.compile(r"^\d{1,5}(/(tcp|udp))?$")
_ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EnvironmentSection(_StrictModel):
    name: str
    instance_name: Optional[str] = Field(
        default=None,
        description="Name of the VM/server; defaults to provisionctl-<name>",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_environment_name(v)

    @field_validator("instance_name")
    @classmethod
    def validate_instance_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            validate_environment_name(v)
        return v

    @property
    def resolved_instance_name(self) -> str:
        return self.instance_name or f"provisionctl-{self.name}"


class SshCredentials(_StrictModel):
    private_key_path: str
    public_key_path: str
    username: str = "deployer"
    port: int = Field(default=22, ge=1, le=65535)

    @field_validator("private_key_path", "public_key_path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in paths."""
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not re.match(r"^[a-z_][a-z0-9_-]{0,31}$", v):
            raise ValueError(f"invalid ssh username '{v}'")
        return v

    def read_public_key(self) -> str:
        """Contents of the public key file, stripped."""
        try:
            return Path(self.public_key_path).read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ConfigError(f"cannot read ssh public key {self.public_key_path}: {e}") from e


class LxdProviderConfig(_StrictModel):
    provider: Literal["lxd"] = "lxd"
    profile_name: str
    image: str = "ubuntu:24.04"


class HetznerProviderConfig(_StrictModel):
    provider: Literal["hetzner"] = "hetzner"
    api_token: str = Field(repr=False)
    server_type: str = "cx22"
    location: str = "nbg1"
    image: str = "ubuntu-24.04"


ProviderConfig = Annotated[
    Union[LxdProviderConfig, HetznerProviderConfig],
    Field(discriminator="provider"),
]


class WorkloadConfig(_StrictModel):
    image: str
    container_name: str = "workload"
    ports: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)

    @field_validator("ports", mode="before")
    @classmethod
    def normalize_ports(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(p) for p in v]
        return v

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: List[str]) -> List[str]:
        for port in v:
            if not _PORT_PATTERN.match(port):
                raise ValueError(f"invalid port '{port}' (expected e.g. 7070 or 6969/udp)")
            if not 0 < int(port.split("/")[0]) <= 65535:
                raise ValueError(f"port out of range: '{port}'")
        return v

    @field_validator("environment")
    @classmethod
    def validate_env_keys(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            if not _ENV_KEY_PATTERN.match(key):
                raise ValueError(f"invalid environment variable name '{key}'")
        return v


class EnvironmentConfig(_StrictModel):
    """Validated user configuration for one environment."""

    environment: EnvironmentSection
    ssh_credentials: SshCredentials
    provider: ProviderConfig
    workload: WorkloadConfig

    @property
    def name(self) -> str:
        return self.environment.name

    @property
    def provider_kind(self) -> ProviderKind:
        return ProviderKind(self.provider.provider)

    def to_record(self) -> Dict[str, Any]:
        """Plain JSON form stored on the Environment record."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "EnvironmentConfig":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"stored configuration is invalid: {_format_errors(e)}") from e


def _format_errors(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}")
    return "; ".join(messages)


def load_environment_config(path: Union[str, Path]) -> EnvironmentConfig:
    """
    Load and validate an environment config file.

    JSON is used for `.json` files, YAML for everything else.

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e

    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at the top level")

    try:
        config = EnvironmentConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {path}: {_format_errors(e)}") from e

    logger.debug(f"Loaded config for environment {config.name} from {path}")
    return config
