"""
Phase state machine.

Each lifecycle operation moves an environment from one of its source phases
through an in-flight phase to a settled phase:

    provision   created | provisioning | failed(provisioning)  ->  provisioning  ->  provisioned
    configure   provisioned | configuring | failed(configuring) ->  configuring   ->  configured
    release     configured | releasing | failed(releasing)      ->  releasing     ->  released
    run         released | starting | failed(starting)          ->  starting      ->  running
    destroy     any phase except destroyed                      ->  destroying    ->  destroyed

Invoking an operation from its own in-flight phase (a crash mid-transition)
or from failed(<its in-flight phase>) re-runs it from scratch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from provisionctl.errors import InvalidTransition
from provisionctl.models.environment import Environment, Phase

__all__ = [
    "Transition",
    "TRANSITIONS",
    "OPERATIONS",
    "check_transition",
    "is_allowed",
    "suggest_next",
]


@dataclass(frozen=True)
class Transition:
    operation: str
    sources: FrozenSet[Phase]
    in_flight: Phase
    settled: Phase

    def allows(self, phase: Phase, failed_at: Optional[Phase] = None) -> bool:
        if phase == Phase.FAILED:
            return Phase.FAILED in self.sources or failed_at == self.in_flight
        return phase in self.sources


def _forward(operation: str, source: Phase, in_flight: Phase, settled: Phase) -> Transition:
    return Transition(operation, frozenset({source, in_flight}), in_flight, settled)


TRANSITIONS: Dict[str, Transition] = {
    "provision": _forward("provision", Phase.CREATED, Phase.PROVISIONING, Phase.PROVISIONED),
    "configure": _forward("configure", Phase.PROVISIONED, Phase.CONFIGURING, Phase.CONFIGURED),
    "release": _forward("release", Phase.CONFIGURED, Phase.RELEASING, Phase.RELEASED),
    "run": _forward("run", Phase.RELEASED, Phase.STARTING, Phase.RUNNING),
    "destroy": Transition(
        "destroy",
        frozenset(p for p in Phase if p != Phase.DESTROYED),
        Phase.DESTROYING,
        Phase.DESTROYED,
    ),
}

OPERATIONS = tuple(TRANSITIONS)


def is_allowed(environment: Environment, operation: str) -> bool:
    return TRANSITIONS[operation].allows(environment.phase, environment.failed_at)


def check_transition(environment: Environment, operation: str) -> Transition:
    """
    Return the transition for `operation` if legal from the current phase.

    Raises:
        InvalidTransition: If the environment's phase is not a source phase
    """
    if operation not in TRANSITIONS:
        raise ValueError(f"Unknown operation: {operation}")
    transition = TRANSITIONS[operation]
    if not transition.allows(environment.phase, environment.failed_at):
        raise InvalidTransition(environment.name, operation, environment.display_phase)
    return transition


def suggest_next(environment: Environment) -> Optional[str]:
    """Operation an operator most likely wants next, if any."""
    if environment.phase == Phase.DESTROYED:
        return "delete"
    if environment.phase == Phase.RUNNING:
        return None
    for operation in ("provision", "configure", "release", "run", "destroy"):
        if is_allowed(environment, operation):
            return operation
    return None
