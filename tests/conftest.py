"""
Pytest configuration and fixtures for provisionctl tests.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from provisionctl.config import ProvisionctlSettings, load_settings
from provisionctl.engine import EngineContext, LifecycleEngine
from provisionctl.models.environment import Environment, Instance, Phase
from provisionctl.process import OperationControl, RawOutput, raise_for_output
from provisionctl.providers.base import Configurer, Provisioner
from provisionctl.rendering.renderer import ArtifactSet
from provisionctl.storage import FileEnvironmentStore


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_provisionctl_env(monkeypatch) -> None:
    """Keep PROVISIONCTL_* variables of the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("PROVISIONCTL_"):
            monkeypatch.delenv(key)


@pytest.fixture
def ssh_keys(tmp_path: Path) -> Dict[str, str]:
    """A fake SSH key pair on disk."""
    keys_dir = tmp_path / "keys"
    keys_dir.mkdir()
    private_key = keys_dir / "id_test"
    public_key = keys_dir / "id_test.pub"
    private_key.write_text("not-a-real-key\n")
    public_key.write_text("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIKtest deployer@example\n")
    return {"private": str(private_key), "public": str(public_key)}


@pytest.fixture
def lxd_config_data(ssh_keys: Dict[str, str]) -> Dict[str, Any]:
    """Valid user config for an LXD environment named e1."""
    return {
        "environment": {"name": "e1"},
        "ssh_credentials": {
            "private_key_path": ssh_keys["private"],
            "public_key_path": ssh_keys["public"],
        },
        "provider": {"provider": "lxd", "profile_name": "provisionctl-e1"},
        "workload": {
            "image": "torrust/tracker:develop",
            "container_name": "tracker",
            "ports": ["6969/udp", 7070, "1212"],
            "environment": {"TRACKER_API_TOKEN": "MyAccessToken"},
        },
    }


@pytest.fixture
def hetzner_config_data(lxd_config_data: Dict[str, Any]) -> Dict[str, Any]:
    """Valid user config for a Hetzner environment named e1."""
    data = json.loads(json.dumps(lxd_config_data))
    data["provider"] = {
        "provider": "hetzner",
        "api_token": "hcloudtoken123",
        "server_type": "cx22",
        "location": "fsn1",
    }
    return data


@pytest.fixture
def settings(tmp_path: Path) -> ProvisionctlSettings:
    return load_settings(
        data_dir=str(tmp_path / "data"),
        build_dir=str(tmp_path / "build"),
        readiness_initial_delay_seconds=0,
    )


# ============================================================================
# Process Runner Fixtures
# ============================================================================

INSTANCE_OUTPUT = {
    "instance_info": {
        "sensitive": False,
        "type": ["object", {}],
        "value": {
            "name": "i-1",
            "image": "base",
            "status": "Running",
            "ip_address": "10.0.0.5",
        },
    }
}


class FakeRunner:
    """
    Scripted stand-in for ProcessRunner.

    Records every command; `fail_on` makes commands containing a token exit
    non-zero for the next `times` calls.
    """

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self._failures: List[Dict[str, Any]] = []
        self.outputs: Dict[str, str] = {"output": json.dumps(INSTANCE_OUTPUT)}

    def fail_on(self, token: str, times: int = 1, exit_code: int = 1, stderr: str = "boom") -> None:
        self._failures.append(
            {"token": token, "times": times, "exit_code": exit_code, "stderr": stderr}
        )

    @property
    def commands(self) -> List[List[str]]:
        return [call["command"] for call in self.calls]

    def run(self, command, cwd=None, env=None, timeout=None, cancel=None, check=True) -> RawOutput:
        command = [str(part) for part in command]
        self.calls.append({"command": command, "cwd": cwd, "timeout": timeout, "cancel": cancel})

        exit_code, stderr = 0, ""
        for failure in self._failures:
            if failure["times"] > 0 and failure["token"] in command:
                failure["times"] -= 1
                exit_code, stderr = failure["exit_code"], failure["stderr"]
                break

        stdout = ""
        if exit_code == 0 and len(command) > 1:
            stdout = self.outputs.get(command[1], "")

        result = RawOutput(
            command=tuple(command),
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=0.01,
        )
        if check:
            raise_for_output(result)
        return result


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def context(settings: ProvisionctlSettings, fake_runner: FakeRunner) -> EngineContext:
    """Engine context over a file store in tmp_path and the fake runner."""
    return EngineContext.from_settings(settings, runner=fake_runner)


@pytest.fixture
def store(context: EngineContext) -> FileEnvironmentStore:
    return context.store


# ============================================================================
# Fake Adapter Fixtures
# ============================================================================

DEFAULT_INSTANCE = Instance(
    id_or_name="i-1",
    image_reference="base",
    status="running",
    address="10.0.0.5",
)


class FakeAdapters:
    """
    In-process adapters recording every operation.

    failures: operation -> exceptions raised by the next calls, in order
    hooks: operation -> callable(environment, control) run before returning
    """

    def __init__(self):
        self.calls: List[str] = []
        self.failures: Dict[str, List[BaseException]] = {}
        self.hooks: Dict[str, Callable[[Environment, OperationControl], None]] = {}
        self.instance: Instance = DEFAULT_INSTANCE
        self._lock = threading.Lock()

    def fail(self, operation: str, *errors: BaseException) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def invoke(self, operation: str, environment: Environment, control: Optional[OperationControl]) -> None:
        with self._lock:
            self.calls.append(operation)
        hook = self.hooks.get(operation)
        if hook is not None:
            hook(environment, control)
        queue = self.failures.get(operation)
        if queue:
            raise queue.pop(0)

    def provisioner(self, kind, context) -> Provisioner:
        return _FakeProvisioner(self, context)

    def configurer(self, kind, context) -> Configurer:
        return _FakeConfigurer(self, context)


_OK = RawOutput(command=(), exit_code=0, stdout="", stderr="", duration_seconds=0.0)


class _FakeAdapterMixin:
    def render(self, environment, phase) -> ArtifactSet:
        return ArtifactSet(environment=environment.name, phase=phase.value, root=Path("."))

    def apply(self, artifacts, control=None) -> RawOutput:
        return _OK

    def destroy(self, artifacts, control=None) -> RawOutput:
        return _OK


class _FakeProvisioner(_FakeAdapterMixin, Provisioner):
    def __init__(self, fakes: FakeAdapters, context):
        super().__init__(context)
        self.fakes = fakes

    def provision(self, environment, control=None) -> Instance:
        self.fakes.invoke("provision", environment, control)
        return self.fakes.instance

    def teardown(self, environment, control=None) -> RawOutput:
        self.fakes.invoke("destroy", environment, control)
        return _OK


class _FakeConfigurer(_FakeAdapterMixin, Configurer):
    def __init__(self, fakes: FakeAdapters, context):
        super().__init__(context)
        self.fakes = fakes

    def configure(self, environment, control=None) -> RawOutput:
        self.fakes.invoke("configure", environment, control)
        return _OK

    def release(self, environment, control=None) -> RawOutput:
        self.fakes.invoke("release", environment, control)
        return _OK

    def start(self, environment, control=None) -> RawOutput:
        self.fakes.invoke("run", environment, control)
        return _OK


@pytest.fixture
def fakes() -> FakeAdapters:
    return FakeAdapters()


@pytest.fixture
def engine(context: EngineContext, fakes: FakeAdapters) -> LifecycleEngine:
    """Engine over a file store with in-process adapters."""
    return LifecycleEngine(
        context,
        provisioner_factory=fakes.provisioner,
        configurer_factory=fakes.configurer,
    )


@pytest.fixture
def tofu_engine(context: EngineContext) -> LifecycleEngine:
    """Engine with the real adapters over the fake process runner."""
    return LifecycleEngine(context)


def set_phase(store, name: str, phase: Phase, failed_at: Optional[Phase] = None, instance: Optional[Instance] = None) -> Environment:
    """Force a stored environment into a phase."""
    with store.lock(name):
        environment = store.load(name)
        environment.phase = phase
        environment.failed_at = failed_at
        if instance is not None:
            environment.instance = instance
        store.save(environment)
    return store.load(name)


@pytest.fixture
def force_phase():
    return set_phase
