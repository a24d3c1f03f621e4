"""
provisionctl: resumable environment lifecycle for a single workload.

Drives OpenTofu and Ansible through provision, configure, release and run,
recording each transition durably so any step can be retried after a crash.

Example:
    from provisionctl import LifecycleEngine, EngineContext, load_settings

    engine = LifecycleEngine(EngineContext.from_settings(load_settings()))
    engine.provision("dev")
"""

__version__ = "0.3.0"

from provisionctl.config import ProvisionctlSettings, load_settings
from provisionctl.engine import EngineContext, LifecycleEngine
from provisionctl.errors import ProvisionctlError
from provisionctl.models import Environment, Instance, Phase, ProviderKind

__all__ = [
    "__version__",
    "ProvisionctlSettings",
    "load_settings",
    "EngineContext",
    "LifecycleEngine",
    "ProvisionctlError",
    "Environment",
    "Instance",
    "Phase",
    "ProviderKind",
]
