"""
OpenTofu-backed provisioning shared by all backends.

Each backend contributes a template set and its variables; running the
tool is the same everywhere:

    apply:    tofu init -input=false
              tofu validate
              tofu apply -auto-approve -input=false -var-file=variables.tfvars
              tofu output -json        (returned to the parser)
    destroy:  tofu init -input=false
              tofu destroy -auto-approve -input=false -var-file=variables.tfvars

OpenTofu state lives in `<data_dir>/<environment>/tofu/terraform.tfstate`
through a rendered local backend, outside the disposable artifact
directory, so re-applying after a failure reconciles in place.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from provisionctl.errors import ConfigError, StoreError
from provisionctl.models.config import EnvironmentConfig
from provisionctl.models.environment import Environment, Phase
from provisionctl.process import OperationControl, RawOutput
from provisionctl.providers.base import Provisioner, environment_config
from provisionctl.rendering.renderer import ArtifactSet

logger = logging.getLogger(__name__)

VAR_FILE = "variables.tfvars"
STATE_DIRNAME = "tofu"
STATE_FILENAME = "terraform.tfstate"


class TofuProvisioner(Provisioner):
    """Provisioner driving one OpenTofu template set."""

    template_set: str = ""

    @abstractmethod
    def backend_variables(self, config: EnvironmentConfig) -> Dict[str, Any]:
        """Variables specific to the backend's template set."""

    def state_path(self, environment: Environment) -> Path:
        return self.context.data_dir / environment.name / STATE_DIRNAME / STATE_FILENAME

    def variables(self, environment: Environment, phase: Phase = Phase.PROVISIONING) -> Dict[str, Any]:
        config = environment_config(environment)
        state_path = self.state_path(environment).resolve()
        try:
            state_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(
                f"cannot create OpenTofu state directory {state_path.parent}: {e}",
                environment=environment.name,
            ) from e

        variables: Dict[str, Any] = {
            "environment_name": environment.name,
            "instance_name": config.environment.resolved_instance_name,
            "ssh_username": config.ssh_credentials.username,
            "ssh_public_key": self._public_key(config, phase),
            "state_path": str(state_path),
        }
        variables.update(self.backend_variables(config))
        return variables

    def _public_key(self, config: EnvironmentConfig, phase: Phase) -> str:
        try:
            return config.ssh_credentials.read_public_key()
        except ConfigError as e:
            if phase != Phase.DESTROYING:
                raise
            # Teardown works from state alone
            logger.warning(f"{e}; rendering teardown artifacts without it")
            return ""

    def render(self, environment: Environment, phase: Phase) -> ArtifactSet:
        return self.context.renderer.render(
            environment.name,
            phase.value,
            self.template_set,
            self.variables(environment, phase),
        )

    def _tofu(self, *args: str):
        return [self.settings.tofu_binary, *args]

    def apply(self, artifacts: ArtifactSet, control: Optional[OperationControl] = None) -> RawOutput:
        self._run(self._tofu("init", "-input=false"), artifacts, control)
        self._run(self._tofu("validate"), artifacts, control)
        self._run(
            self._tofu("apply", "-auto-approve", "-input=false", f"-var-file={VAR_FILE}"),
            artifacts,
            control,
        )
        return self._run(self._tofu("output", "-json"), artifacts, control)

    def destroy(self, artifacts: ArtifactSet, control: Optional[OperationControl] = None) -> RawOutput:
        self._run(self._tofu("init", "-input=false"), artifacts, control)
        result = self._run(
            self._tofu("destroy", "-auto-approve", "-input=false", f"-var-file={VAR_FILE}"),
            artifacts,
            control,
        )
        logger.info(f"Destroyed infrastructure of environment {artifacts.environment}")
        return result
