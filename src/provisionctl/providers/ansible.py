"""
Ansible-backed configuration, release and start.

Every step is one `ansible-playbook -i inventory.yml <playbook>` run inside
the phase's artifact directory. Configure runs, in order:

    wait for SSH          TCP polling with backoff and a deadline
    wait-cloud-init.yml
    update-apt-cache.yml             retried; skipped when skip_cache_update is "true"
    install-docker.yml
    install-docker-compose.yml
    configure-security-updates.yml
    configure-firewall.yml           skipped when skip_firewall is "true"

Release deploys the rendered docker-compose.yml and .env; run starts the
compose services. Teardown belongs to the provisioner, so destroy does
nothing here.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from provisionctl.contracts.timeouts import DEFAULT_RETRY_BACKOFF, DEFAULT_RETRY_DELAY_S
from provisionctl.errors import RenderError
from provisionctl.models.environment import Environment, Phase, ProviderKind
from provisionctl.process import OperationControl, RawOutput
from provisionctl.providers.base import Configurer, environment_config, register_configurer
from provisionctl.readiness import wait_for_tcp
from provisionctl.rendering.renderer import ArtifactSet
from provisionctl.retry import retry_with_backoff

if TYPE_CHECKING:
    from provisionctl.engine.context import EngineContext

logger = logging.getLogger(__name__)

INVENTORY_FILE = "inventory.yml"
REMOTE_APP_ROOT = "/opt/provisionctl"

WAIT_CLOUD_INIT = "wait-cloud-init.yml"
UPDATE_APT_CACHE = "update-apt-cache.yml"
CONFIGURE_FIREWALL = "configure-firewall.yml"

CONFIGURE_STEPS = [
    WAIT_CLOUD_INIT,
    UPDATE_APT_CACHE,
    "install-docker.yml",
    "install-docker-compose.yml",
    "configure-security-updates.yml",
    CONFIGURE_FIREWALL,
]
RELEASE_STEPS = ["deploy-compose-files.yml"]
RUN_STEPS = ["run-compose-services.yml"]

_TEMPLATE_SETS = {
    Phase.CONFIGURING: "ansible/configure",
    Phase.RELEASING: "ansible/release",
    Phase.STARTING: "ansible/run",
}


@register_configurer(ProviderKind.LXD, ProviderKind.HETZNER)
class AnsibleConfigurer(Configurer):
    """
    Configurer for every backend; hosts are reached over SSH.

    Args:
        context: Engine context
        readiness: Callable waiting for `host:port` to accept connections
        retry_delay: Initial delay between package cache update attempts
    """

    def __init__(
        self,
        context: "EngineContext",
        readiness: Callable[..., None] = wait_for_tcp,
        retry_delay: float = DEFAULT_RETRY_DELAY_S,
    ):
        super().__init__(context)
        self.readiness = readiness
        self.retry_delay = retry_delay

    def steps_for(self, phase: Phase) -> List[str]:
        if phase == Phase.CONFIGURING:
            steps = list(CONFIGURE_STEPS)
            if self.settings.skip_cache_update_enabled:
                logger.info("Skipping package cache update (skip_cache_update=true)")
                steps.remove(UPDATE_APT_CACHE)
            if self.settings.skip_firewall_enabled:
                logger.info("Skipping firewall configuration (skip_firewall=true)")
                steps.remove(CONFIGURE_FIREWALL)
            return steps
        if phase == Phase.RELEASING:
            return list(RELEASE_STEPS)
        if phase == Phase.STARTING:
            return list(RUN_STEPS)
        raise RenderError(f"no configuration steps for phase '{phase.value}'")

    def variables(self, environment: Environment) -> Dict[str, Any]:
        if environment.instance is None:
            raise RenderError(
                "environment has no provisioned instance",
                environment=environment.name,
            )
        config = environment_config(environment)
        ssh = config.ssh_credentials
        workload = config.workload
        return {
            "environment_name": environment.name,
            "instance_name": environment.instance.id_or_name,
            "instance_address": environment.instance.address,
            "ssh_username": ssh.username,
            "ssh_port": ssh.port,
            "ssh_private_key_path": ssh.private_key_path,
            "app_dir": f"{REMOTE_APP_ROOT}/{environment.name}",
            "workload_image": workload.image,
            "container_name": workload.container_name,
            "workload_ports": list(workload.ports),
            "workload_environment": dict(workload.environment),
        }

    def render(self, environment: Environment, phase: Phase) -> ArtifactSet:
        if phase not in _TEMPLATE_SETS:
            raise RenderError(f"no configuration templates for phase '{phase.value}'")
        return self.context.renderer.render(
            environment.name,
            phase.value,
            _TEMPLATE_SETS[phase],
            self.variables(environment),
            steps=self.steps_for(phase),
        )

    def configure(self, environment: Environment, control: Optional[OperationControl] = None) -> RawOutput:
        artifacts = self.render(environment, Phase.CONFIGURING)
        self.wait_for_ssh(environment, control)
        return self.apply(artifacts, control)

    def wait_for_ssh(self, environment: Environment, control: Optional[OperationControl] = None) -> None:
        control = control or OperationControl()
        config = environment_config(environment)
        timeout = self.settings.readiness_timeout_seconds
        remaining = control.remaining()
        if remaining is not None:
            timeout = min(timeout, max(remaining, 0.0))
        self.readiness(
            environment.instance.address,
            config.ssh_credentials.port,
            timeout=timeout,
            initial_delay=self.settings.readiness_initial_delay_seconds,
            max_delay=self.settings.readiness_max_delay_seconds,
            cancel=control.cancel,
        )

    def _playbook(self, playbook: str) -> List[str]:
        return [self.settings.ansible_playbook_binary, "-i", INVENTORY_FILE, playbook]

    def apply(self, artifacts: ArtifactSet, control: Optional[OperationControl] = None) -> RawOutput:
        result: Optional[RawOutput] = None
        for step in artifacts.steps:
            logger.info(f"Running playbook {step} for environment {artifacts.environment}")
            if step == UPDATE_APT_CACHE:
                remaining = control.remaining() if control else None
                result = retry_with_backoff(
                    lambda: self._run(self._playbook(step), artifacts, control),
                    description=f"{step} for {artifacts.environment}",
                    max_attempts=self.settings.cache_update_attempts,
                    initial_delay=self.retry_delay,
                    backoff=DEFAULT_RETRY_BACKOFF,
                    timeout=max(remaining, 0.0) if remaining is not None else None,
                    cancel=control.cancel if control else None,
                )
            else:
                result = self._run(self._playbook(step), artifacts, control)
        if result is None:
            return RawOutput(command=(), exit_code=0, stdout="", stderr="", duration_seconds=0.0)
        return result

    def destroy(self, artifacts: ArtifactSet, control: Optional[OperationControl] = None) -> RawOutput:
        logger.debug(f"Nothing to tear down on the host of {artifacts.environment}")
        return RawOutput(command=(), exit_code=0, stdout="", stderr="", duration_seconds=0.0)
