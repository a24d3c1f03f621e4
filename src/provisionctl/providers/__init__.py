"""
Provisioning and configuration adapters.

Example:
    from provisionctl.providers import get_provisioner, get_configurer

    provisioner = get_provisioner(environment.provider_kind, context)
    instance = provisioner.provision(environment)
"""

from provisionctl.providers.base import (
    Adapter,
    Configurer,
    Provisioner,
    environment_config,
    get_configurer,
    get_provisioner,
    register_configurer,
    register_provisioner,
)
from provisionctl.providers.ansible import AnsibleConfigurer
from provisionctl.providers.hetzner import HetznerProvisioner
from provisionctl.providers.lxd import LxdProvisioner
from provisionctl.providers.tofu import TofuProvisioner

__all__ = [
    "Adapter",
    "Configurer",
    "Provisioner",
    "environment_config",
    "get_configurer",
    "get_provisioner",
    "register_configurer",
    "register_provisioner",
    "AnsibleConfigurer",
    "HetznerProvisioner",
    "LxdProvisioner",
    "TofuProvisioner",
]
