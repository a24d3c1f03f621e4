"""
Environment lifecycle engine.

Every transition follows the same contract:

1. Acquire the per-name lock and load the current record under it
2. Validate the transition (InvalidTransition, nothing written)
3. Persist the in-flight phase before invoking any adapter
4. Invoke the adapter (render, run, parse)
5. Persist the settled phase and its results in one write, or persist
   failed(<in-flight phase>) and re-raise the adapter error annotated with
   the environment name and phase

The lock is held for the whole transition, so two callers racing on the
same name are serialized and the loser sees the winner's result.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from provisionctl.engine.context import EngineContext
from provisionctl.engine.phases import Transition, check_transition
from provisionctl.errors import ConfigError, ProviderMismatch, ProvisionctlError, StoreError
from provisionctl.logger import LifecycleLogger
from provisionctl.models.config import EnvironmentConfig
from provisionctl.models.environment import (
    Environment,
    HistoryEntry,
    Instance,
    Phase,
    ProviderKind,
    utc_now,
)
from provisionctl.process import OperationControl
from provisionctl.providers.base import (
    Configurer,
    Provisioner,
    environment_config,
    get_configurer,
    get_provisioner,
)
from provisionctl.rendering.renderer import ArtifactSet

logger = logging.getLogger(__name__)

__all__ = ["LifecycleEngine"]

# Adapter work for one transition; mutates the environment with its results
Action = Callable[[Environment, OperationControl], None]


def _nothing(environment: Environment, control: OperationControl) -> None:
    return None


PROVISIONER_PHASES = (Phase.PROVISIONING, Phase.DESTROYING)
CONFIGURER_PHASES = (Phase.CONFIGURING, Phase.RELEASING, Phase.STARTING)
RENDERABLE_PHASES = PROVISIONER_PHASES + CONFIGURER_PHASES


def _renderable_phase(value: Union[Phase, str]) -> Phase:
    phase = next((p for p in RENDERABLE_PHASES if p == value), None)
    if phase is None:
        label = value.value if isinstance(value, Phase) else value
        choices = ", ".join(p.value for p in RENDERABLE_PHASES)
        raise ConfigError(f"cannot render phase '{label}', choose one of: {choices}")
    return phase


def _preview_instance(environment: Environment, config: EnvironmentConfig, address: str) -> Instance:
    """The recorded instance with `address` substituted, or a placeholder one."""
    current = environment.instance
    try:
        return Instance(
            id_or_name=current.id_or_name if current else config.environment.resolved_instance_name,
            image_reference=current.image_reference if current else "not-provisioned",
            status=current.status if current else "not-provisioned",
            address=address,
        )
    except ValueError as e:
        raise ConfigError(
            f"'{address}' is not a valid IP address", environment=environment.name
        ) from e


class LifecycleEngine:
    """
    Drives environments through provision, configure, release, run and destroy.

    Args:
        context: Settings, store, renderer and process runner
        provisioner_factory: Builds the provisioner for a provider kind
        configurer_factory: Builds the configurer for a provider kind
        lifecycle_logger: Structured event logger
        tracer: OpenTelemetry tracer (the global one when None)
    """

    def __init__(
        self,
        context: EngineContext,
        provisioner_factory: Callable[[ProviderKind, EngineContext], Provisioner] = get_provisioner,
        configurer_factory: Callable[[ProviderKind, EngineContext], Configurer] = get_configurer,
        lifecycle_logger: Optional[LifecycleLogger] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.context = context
        self.store = context.store
        self._provisioner_factory = provisioner_factory
        self._configurer_factory = configurer_factory
        self.lifecycle = lifecycle_logger or LifecycleLogger()
        self.tracer = tracer or trace.get_tracer("provisionctl.engine")

    # ------------------------------------------------------------------
    # Record management
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        provider_kind: Union[ProviderKind, str],
        config: Union[EnvironmentConfig, Dict[str, Any]],
    ) -> Environment:
        """
        Validate `config` and persist a new environment in phase `created`.

        Raises:
            ConfigError: If the config is invalid or names another environment
            ProviderMismatch: If the config selects a different provider
            AlreadyExists: If the name is taken
        """
        provider_kind = ProviderKind(provider_kind)
        if not isinstance(config, EnvironmentConfig):
            config = EnvironmentConfig.from_record(config)
        if config.name != name:
            raise ConfigError(
                f"config declares environment '{config.name}'", environment=name
            )
        if config.provider_kind != provider_kind:
            raise ProviderMismatch(name, provider_kind.value, config.provider_kind.value)

        with self.tracer.start_as_current_span(
            "provisionctl.create",
            attributes={
                "environment.name": name,
                "environment.provider": provider_kind.value,
            },
        ) as span:
            environment = self.store.create(name, provider_kind, config.to_record())
            span.set_attribute("environment.phase", environment.phase.value)
            span.set_status(Status(StatusCode.OK))

        self.lifecycle.log_environment_created(name, provider_kind.value)
        return environment

    def show(self, name: str) -> Environment:
        return self.store.load(name)

    def list(self) -> List[Environment]:
        return self.store.list()

    def delete(self, name: str, force: bool = False) -> None:
        """
        Remove a destroyed environment (or a failed one with `force`).

        Raises:
            NotFound: If no record exists
            NotDestroyed: If external resources may still exist
        """
        with self.store.lock(name):
            self.store.delete(name, force=force)
            artifacts = self.context.build_dir / name
            if artifacts.exists():
                try:
                    shutil.rmtree(artifacts)
                except OSError as e:
                    raise StoreError(
                        f"record deleted but artifacts in {artifacts} remain: {e}", environment=name
                    ) from e
        self.lifecycle.log_environment_deleted(name, forced=force)

    def render(
        self,
        name: str,
        phase: Optional[Union[Phase, str]] = None,
        address: Optional[str] = None,
    ) -> List[ArtifactSet]:
        """
        Render artifacts for inspection without running any tool.

        The record is never written. Without `phase`, the provisioning
        artifacts are rendered and, once a target address is known, the
        configure, release and run artifacts too. `address` stands in for the
        instance address (e.g. to preview configuration before provisioning).

        Raises:
            NotFound: If no record exists
            ConfigError: If `phase` cannot be rendered or `address` is not an IP
            RenderError: If a configuration phase is requested without an address
        """
        with self.tracer.start_as_current_span(
            "provisionctl.render",
            attributes={"environment.name": name},
        ) as span:
            with self.store.lock(name):
                environment = self.store.load(name)
                config = environment_config(environment)
                if address is not None:
                    environment.instance = _preview_instance(environment, config, address)

                if phase is None:
                    phases = [Phase.PROVISIONING]
                    if environment.instance is not None:
                        phases.extend(CONFIGURER_PHASES)
                    else:
                        logger.info(
                            f"Environment {name} has no instance address yet, "
                            f"rendering provisioning artifacts only"
                        )
                else:
                    phases = [_renderable_phase(phase)]

                artifact_sets = []
                for target in phases:
                    if target in CONFIGURER_PHASES:
                        adapter = self._configurer(environment)
                    else:
                        adapter = self._provisioner_factory(environment.provider_kind, self.context)
                    artifact_sets.append(adapter.render(environment, target))

            span.set_attribute("render.phases", [p.value for p in phases])
            span.set_status(Status(StatusCode.OK))

        for artifacts in artifact_sets:
            logger.info(f"Rendered {len(artifacts.files)} artifacts for {name} into {artifacts.root}")
        return artifact_sets

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def provision(
        self,
        name: str,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Environment:
        """Create the compute target; settles in `provisioned` with an Instance."""

        def action(environment: Environment, control: OperationControl) -> None:
            provisioner = self._provisioner_factory(environment.provider_kind, self.context)
            environment.instance = provisioner.provision(environment, control)

        return self._transition(name, "provision", lambda environment: action, cancel, timeout)

    def configure(
        self,
        name: str,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Environment:
        """Prepare the host (container runtime, updates, firewall)."""

        def action(environment: Environment, control: OperationControl) -> None:
            self._configurer(environment).configure(environment, control)

        return self._transition(name, "configure", lambda environment: action, cancel, timeout)

    def release(
        self,
        name: str,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Environment:
        """Deploy the workload's compose files to the host."""

        def action(environment: Environment, control: OperationControl) -> None:
            self._configurer(environment).release(environment, control)

        return self._transition(name, "release", lambda environment: action, cancel, timeout)

    def run(
        self,
        name: str,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Environment:
        """Start the workload's services."""

        def action(environment: Environment, control: OperationControl) -> None:
            self._configurer(environment).start(environment, control)

        return self._transition(name, "run", lambda environment: action, cancel, timeout)

    def destroy(
        self,
        name: str,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Environment:
        """
        Tear down all external resources.

        Legal from every phase except `destroyed`. When provisioning never
        started there is nothing to tear down and no adapter is invoked.
        """

        def teardown(environment: Environment, control: OperationControl) -> None:
            provisioner = self._provisioner_factory(environment.provider_kind, self.context)
            provisioner.teardown(environment, control)

        def plan(environment: Environment) -> Action:
            if not environment.provisioning_attempted:
                logger.info(f"Environment {environment.name} was never provisioned, nothing to tear down")
                return _nothing
            return teardown

        return self._transition(name, "destroy", plan, cancel, timeout)

    def _configurer(self, environment: Environment) -> Configurer:
        return self._configurer_factory(environment.provider_kind, self.context)

    def _transition(
        self,
        name: str,
        operation: str,
        plan: Callable[[Environment], Action],
        cancel: Optional[threading.Event],
        timeout: Optional[float],
    ) -> Environment:
        """Run one transition; `plan` picks the adapter work from the loaded record."""
        with self.tracer.start_as_current_span(
            f"provisionctl.{operation}",
            attributes={"environment.name": name},
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                with self.store.lock(name):
                    environment = self.store.load(name)
                    span.set_attribute("environment.provider", environment.provider_kind.value)
                    transition = check_transition(environment, operation)
                    # Config must still match the stored provider before anything is written
                    environment_config(environment)
                    result = self._execute(
                        environment, transition, plan(environment), cancel, timeout
                    )
            except ProvisionctlError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.summary()))
                raise

            span.set_attribute("environment.phase", result.phase.value)
            span.set_status(Status(StatusCode.OK))
            return result

    def _execute(
        self,
        environment: Environment,
        transition: Transition,
        action: Action,
        cancel: Optional[threading.Event],
        timeout: Optional[float],
    ) -> Environment:
        name = environment.name
        provider = environment.provider_kind.value
        operation = transition.operation
        from_phase = environment.phase
        started_at = utc_now()
        started = time.monotonic()

        # In-flight marker
        environment.phase = transition.in_flight
        environment.failed_at = None
        environment.in_flight_since = started_at
        self.store.save(environment)
        self.lifecycle.log_phase_started(
            name, provider, operation, transition.in_flight.value, from_phase=from_phase.value
        )

        control = OperationControl.start(timeout=timeout, cancel=cancel)
        try:
            action(environment, control)
        except Exception as e:
            duration = time.monotonic() - started
            if isinstance(e, ProvisionctlError):
                e.annotate(name, transition.in_flight.value)
                error = e.summary()
            else:
                error = f"{type(e).__name__}: {e}"

            environment.phase = Phase.FAILED
            environment.failed_at = transition.in_flight
            environment.in_flight_since = None
            environment.history.append(
                HistoryEntry(
                    operation=operation,
                    from_phase=from_phase,
                    to_phase=Phase.FAILED,
                    failed_at=transition.in_flight,
                    started_at=started_at,
                    finished_at=utc_now(),
                    error=f"{error} (after {duration:.1f}s)",
                )
            )
            try:
                self.store.save(environment)
            except Exception as save_error:
                # Keep the adapter error
                logger.error(
                    f"Could not record failure of {operation} for environment {name}: {save_error}"
                )
            self.lifecycle.log_phase_failed(
                name,
                provider,
                operation,
                transition.in_flight.value,
                error=error,
                error_type=type(e).__name__,
                retryable=getattr(e, "retryable", False),
                duration_seconds=duration,
            )
            logger.error(f"{operation} of environment {name} failed: {error}")
            raise

        environment.phase = transition.settled
        environment.in_flight_since = None
        environment.history.append(
            HistoryEntry(
                operation=operation,
                from_phase=from_phase,
                to_phase=transition.settled,
                started_at=started_at,
                finished_at=utc_now(),
            )
        )
        self.store.save(environment)
        duration = time.monotonic() - started
        self.lifecycle.log_phase_settled(
            name, provider, operation, transition.settled.value, duration_seconds=duration
        )
        logger.info(f"Environment {name} is {transition.settled.value} ({duration:.1f}s)")
        return environment.copy()
