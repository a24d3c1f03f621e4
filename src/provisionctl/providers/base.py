"""
Adapter interfaces and registries.

Two adapter kinds sit behind the engine:

- Provisioner: creates and tears down the compute target (OpenTofu)
- Configurer: prepares the host, deploys and starts the workload (Ansible)

Both share the render / apply / destroy capability. Adapters are selected
once per environment from its immutable provider kind.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Optional, Type

from provisionctl.errors import ConfigError, ProviderMismatch
from provisionctl.models.config import EnvironmentConfig
from provisionctl.models.environment import Environment, Instance, Phase, ProviderKind
from provisionctl.parsing import parse_instance_info
from provisionctl.process import OperationControl, RawOutput
from provisionctl.rendering.renderer import ArtifactSet

if TYPE_CHECKING:
    from provisionctl.engine.context import EngineContext

logger = logging.getLogger(__name__)

__all__ = [
    "Adapter",
    "Provisioner",
    "Configurer",
    "register_provisioner",
    "register_configurer",
    "get_provisioner",
    "get_configurer",
    "environment_config",
]


def environment_config(environment: Environment) -> EnvironmentConfig:
    """
    Validated config of a stored environment.

    Raises:
        ConfigError: If the stored config no longer validates
        ProviderMismatch: If the config's provider differs from the stored kind
    """
    config = EnvironmentConfig.from_record(environment.config)
    if config.provider_kind != environment.provider_kind:
        raise ProviderMismatch(
            environment.name,
            expected=environment.provider_kind.value,
            actual=config.provider_kind.value,
        )
    return config


class Adapter(ABC):
    """Capability shared by provisioners and configurers."""

    def __init__(self, context: "EngineContext"):
        self.context = context

    @property
    def settings(self):
        return self.context.settings

    @abstractmethod
    def render(self, environment: Environment, phase: Phase) -> ArtifactSet:
        """Render the artifacts `phase` needs for `environment`."""

    @abstractmethod
    def apply(self, artifacts: ArtifactSet, control: Optional[OperationControl] = None) -> RawOutput:
        """Run the rendered artifacts forward."""

    @abstractmethod
    def destroy(self, artifacts: ArtifactSet, control: Optional[OperationControl] = None) -> RawOutput:
        """Tear down what `apply` created."""

    def _run(
        self,
        command,
        artifacts: ArtifactSet,
        control: Optional[OperationControl],
    ) -> RawOutput:
        control = control or OperationControl()
        return self.context.runner.run(
            command,
            cwd=artifacts.root,
            timeout=control.timeout_for(self.settings.tool_timeout_seconds),
            cancel=control.cancel,
        )


class Provisioner(Adapter):
    """Creates the compute target and reports it as an Instance."""

    def provision(self, environment: Environment, control: Optional[OperationControl] = None) -> Instance:
        artifacts = self.render(environment, Phase.PROVISIONING)
        raw = self.apply(artifacts, control)
        return parse_instance_info(raw)

    def teardown(self, environment: Environment, control: Optional[OperationControl] = None) -> RawOutput:
        artifacts = self.render(environment, Phase.DESTROYING)
        return self.destroy(artifacts, control)


class Configurer(Adapter):
    """Prepares the host, then deploys and starts the workload."""

    def configure(self, environment: Environment, control: Optional[OperationControl] = None) -> RawOutput:
        return self.apply(self.render(environment, Phase.CONFIGURING), control)

    def release(self, environment: Environment, control: Optional[OperationControl] = None) -> RawOutput:
        return self.apply(self.render(environment, Phase.RELEASING), control)

    def start(self, environment: Environment, control: Optional[OperationControl] = None) -> RawOutput:
        return self.apply(self.render(environment, Phase.STARTING), control)


# Adapter registries
_PROVISIONERS: Dict[ProviderKind, Type[Provisioner]] = {}
_CONFIGURERS: Dict[ProviderKind, Type[Configurer]] = {}


def register_provisioner(kind: ProviderKind):
    """Decorator to register the provisioner for a provider kind."""
    def decorator(cls: Type[Provisioner]) -> Type[Provisioner]:
        _PROVISIONERS[ProviderKind(kind)] = cls
        return cls
    return decorator


def register_configurer(*kinds: ProviderKind):
    """Decorator to register a configurer for one or more provider kinds."""
    def decorator(cls: Type[Configurer]) -> Type[Configurer]:
        for kind in kinds:
            _CONFIGURERS[ProviderKind(kind)] = cls
        return cls
    return decorator


def _load_builtin_adapters() -> None:
    # Import adapters to register them
    from provisionctl.providers import ansible, hetzner, lxd  # noqa: F401


def get_provisioner(kind: ProviderKind, context: "EngineContext") -> Provisioner:
    _load_builtin_adapters()
    kind = ProviderKind(kind)
    if kind not in _PROVISIONERS:
        raise ConfigError(f"no provisioner registered for provider '{kind.value}'")
    return _PROVISIONERS[kind](context)


def get_configurer(kind: ProviderKind, context: "EngineContext") -> Configurer:
    _load_builtin_adapters()
    kind = ProviderKind(kind)
    if kind not in _CONFIGURERS:
        raise ConfigError(f"no configurer registered for provider '{kind.value}'")
    return _CONFIGURERS[kind](context)
