"""Hetzner Cloud servers."""

from __future__ import annotations

from typing import Any, Dict

from provisionctl.models.config import EnvironmentConfig
from provisionctl.models.environment import ProviderKind
from provisionctl.providers.base import register_provisioner
from provisionctl.providers.tofu import TofuProvisioner


@register_provisioner(ProviderKind.HETZNER)
class HetznerProvisioner(TofuProvisioner):
    template_set = "tofu/hetzner"

    def backend_variables(self, config: EnvironmentConfig) -> Dict[str, Any]:
        return {
            "api_token": config.provider.api_token,
            "server_type": config.provider.server_type,
            "location": config.provider.location,
            "image": config.provider.image,
        }
