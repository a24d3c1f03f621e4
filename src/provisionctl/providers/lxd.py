"""Local LXD virtual machines."""

from __future__ import annotations

from typing import Any, Dict

from provisionctl.models.config import EnvironmentConfig
from provisionctl.models.environment import ProviderKind
from provisionctl.providers.base import register_provisioner
from provisionctl.providers.tofu import TofuProvisioner


@register_provisioner(ProviderKind.LXD)
class LxdProvisioner(TofuProvisioner):
    template_set = "tofu/lxd"

    def backend_variables(self, config: EnvironmentConfig) -> Dict[str, Any]:
        return {
            "profile_name": config.provider.profile_name,
            "image": config.provider.image,
        }
