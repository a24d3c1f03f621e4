"""
provisionctl CLI - Drive environments through their lifecycle.

Commands:
    provisionctl create     Create an environment from a config file
    provisionctl validate   Validate a config file without creating anything
    provisionctl provision  Create the VM/server
    provisionctl configure  Prepare the host (container runtime, updates, firewall)
    provisionctl release    Deploy the workload's compose files
    provisionctl run        Start the workload
    provisionctl destroy    Tear down all external resources
    provisionctl list       List environments
    provisionctl show       Show one environment
    provisionctl render     Render an environment's artifacts without running any tool
    provisionctl delete     Remove a destroyed environment's record
"""

from __future__ import annotations

import contextlib
import json
import logging
import signal
import threading
from typing import Any, Dict, Generator, Optional

import click

from provisionctl import __version__
from provisionctl.config import load_settings
from provisionctl.engine import EngineContext, LifecycleEngine, suggest_next
from provisionctl.errors import ProvisionctlError
from provisionctl.logger import configure_logging
from provisionctl.models.config import load_environment_config
from provisionctl.models.environment import Environment

logger = logging.getLogger(__name__)


class LifecycleCommandError(click.ClickException):
    """Error shown to operators, naming the environment and failing phase."""

    def __init__(self, error: ProvisionctlError):
        self.error = error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = []
        if self.error.environment:
            parts.append(f"Environment: {self.error.environment}")
        if self.error.phase:
            parts.append(f"Phase: {self.error.phase}")
        parts.append(f"Error: {self.error.summary()}")
        if self.error.retryable:
            parts.append("The step can be retried by running the same command again.")
        return "\n".join(parts)


@contextlib.contextmanager
def _cancel_on_interrupt() -> Generator[threading.Event, None, None]:
    """Turn Ctrl-C into a cancellation of the running transition."""
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def handler(signum, frame):
        click.echo("Cancelling, waiting for the running tool to stop...", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _engine(ctx: click.Context) -> LifecycleEngine:
    obj = ctx.ensure_object(dict)
    if "engine" not in obj:
        try:
            obj["engine"] = LifecycleEngine(EngineContext.from_settings(obj["settings"]))
        except ProvisionctlError as e:
            raise LifecycleCommandError(e) from e
    return obj["engine"]


def _summary(environment: Environment) -> Dict[str, Any]:
    return {
        "name": environment.name,
        "provider": environment.provider_kind.value,
        "phase": environment.display_phase,
        "address": environment.instance.address if environment.instance else None,
        "updated_at": environment.updated_at,
    }


@click.group()
@click.version_option(__version__)
@click.option("--data-dir", envvar="PROVISIONCTL_DATA_DIR", help="Directory for environment records")
@click.option("--build-dir", envvar="PROVISIONCTL_BUILD_DIR", help="Directory for rendered artifacts")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Logging level",
)
@click.option("--log-format", type=click.Choice(["text", "json"]), help="Log output format")
@click.pass_context
def main(ctx, data_dir, build_dir, log_level, log_format):
    """provisionctl - Provision, configure, release and run a workload."""
    overrides = {
        key: value
        for key, value in {
            "data_dir": data_dir,
            "build_dir": build_dir,
            "log_level": log_level,
            "log_format": log_format,
        }.items()
        if value is not None
    }
    try:
        settings = load_settings(**overrides)
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e
    configure_logging(settings.log_level, settings.log_format)
    ctx.ensure_object(dict)["settings"] = settings


@main.command()
@click.option("--config", "-c", "config_path", required=True, type=click.Path(dir_okay=False), help="Environment config file (JSON or YAML)")
@click.pass_context
def create(ctx, config_path):
    """Create an environment from a config file."""
    try:
        config = load_environment_config(config_path)
        environment = _engine(ctx).create(config.name, config.provider_kind, config)
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e
    click.echo(f"Created environment {environment.name} ({environment.provider_kind.value})")
    click.echo(f"Next: provisionctl provision {environment.name}")


@main.command()
@click.option("--config", "-c", "config_path", required=True, type=click.Path(dir_okay=False), help="Environment config file (JSON or YAML)")
def validate(config_path):
    """Validate a config file without creating anything."""
    try:
        config = load_environment_config(config_path)
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e
    click.echo(f"Config is valid: environment {config.name}, provider {config.provider_kind.value}")


def _transition_command(operation: str, help_text: str):
    @click.argument("name")
    @click.option("--timeout", type=float, default=None, help="Overall deadline in seconds")
    @click.pass_context
    def command(ctx, name, timeout):
        engine = _engine(ctx)
        try:
            with _cancel_on_interrupt() as cancel:
                environment = getattr(engine, operation)(name, cancel=cancel, timeout=timeout)
        except ProvisionctlError as e:
            raise LifecycleCommandError(e) from e
        click.echo(f"Environment {environment.name} is {environment.display_phase}")
        hint = suggest_next(environment)
        if hint:
            click.echo(f"Next: provisionctl {hint} {environment.name}")

    command.__doc__ = help_text
    return main.command(name=operation)(command)


provision = _transition_command("provision", "Create the VM/server for NAME.")
configure = _transition_command("configure", "Prepare the host of NAME (container runtime, updates, firewall).")
release = _transition_command("release", "Deploy the workload's compose files to NAME.")
run = _transition_command("run", "Start the workload on NAME.")
destroy = _transition_command("destroy", "Tear down all external resources of NAME.")


@main.command(name="list")
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
def list_environments(ctx, output):
    """List environments."""
    try:
        environments = _engine(ctx).list()
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e

    if output == "json":
        click.echo(json.dumps([_summary(e) for e in environments], indent=2))
        return
    if not environments:
        click.echo("No environments")
        return
    click.echo(f"{'NAME':<24} {'PROVIDER':<10} {'PHASE':<28} ADDRESS")
    for environment in environments:
        row = _summary(environment)
        click.echo(f"{row['name']:<24} {row['provider']:<10} {row['phase']:<28} {row['address'] or '-'}")


@main.command()
@click.argument("name")
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
def show(ctx, name, output):
    """Show one environment."""
    try:
        environment = _engine(ctx).show(name)
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e

    if output == "json":
        data = environment.to_dict()
        # Credentials stay in the record file
        data.pop("config", None)
        data["display_phase"] = environment.display_phase
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"Environment: {environment.name}")
    click.echo(f"Provider:    {environment.provider_kind.value}")
    click.echo(f"Phase:       {environment.display_phase}")
    if environment.in_flight_since:
        click.echo(f"In flight since {environment.in_flight_since} (interrupted? re-run to resume)")
    if environment.instance:
        instance = environment.instance
        click.echo(f"Instance:    {instance.id_or_name} ({instance.status})")
        click.echo(f"Image:       {instance.image_reference}")
        click.echo(f"Address:     {instance.address}")
    if environment.history:
        click.echo("History:")
        for entry in environment.history:
            line = f"  {entry.finished_at}  {entry.operation:<10} -> "
            if entry.failed:
                line += f"failed({entry.failed_at.value if entry.failed_at else '?'})"
            else:
                line += entry.to_phase.value
            click.echo(line)
            if entry.error:
                click.echo(f"      {entry.error}")
    hint = suggest_next(environment)
    if hint:
        click.echo(f"Next: provisionctl {hint} {environment.name}")


@main.command()
@click.argument("name")
@click.option(
    "--phase",
    type=click.Choice(["provisioning", "configuring", "releasing", "starting", "destroying"]),
    help="Render one phase only (default: every phase that can be rendered)",
)
@click.option("--address", help="Target IP address to render configuration artifacts for")
@click.pass_context
def render(ctx, name, phase, address):
    """Render the artifacts of NAME for inspection; nothing is run or recorded."""
    try:
        artifact_sets = _engine(ctx).render(name, phase=phase, address=address)
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e

    for artifacts in artifact_sets:
        click.echo(f"{artifacts.phase}: {artifacts.root}")
        for relative in artifacts.files:
            click.echo(f"  {relative}")


@main.command()
@click.argument("name")
@click.option("--force", is_flag=True, help="Also delete a failed environment (external resources are not checked)")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation with --force")
@click.pass_context
def delete(ctx, name, force, yes):
    """Remove the record of a destroyed environment."""
    if force and not yes:
        click.confirm(
            f"Force-delete {name}? Make sure no VM/server of this environment still exists",
            abort=True,
        )
    try:
        _engine(ctx).delete(name, force=force)
    except ProvisionctlError as e:
        raise LifecycleCommandError(e) from e
    click.echo(f"Deleted environment {name}")


if __name__ == "__main__":
    main()
