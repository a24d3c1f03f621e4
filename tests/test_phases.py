"""
Tests for the phase state machine.
"""

import pytest

from provisionctl.engine.phases import (
    OPERATIONS,
    TRANSITIONS,
    check_transition,
    is_allowed,
    suggest_next,
)
from provisionctl.errors import InvalidTransition
from provisionctl.models.environment import Environment, Phase, ProviderKind

IN_FLIGHT = {t.in_flight for t in TRANSITIONS.values()}

# (phase, failed_at) -> operations that are legal from it
LEGAL = {
    (Phase.CREATED, None): {"provision", "destroy"},
    (Phase.PROVISIONING, None): {"provision", "destroy"},
    (Phase.PROVISIONED, None): {"configure", "destroy"},
    (Phase.CONFIGURING, None): {"configure", "destroy"},
    (Phase.CONFIGURED, None): {"release", "destroy"},
    (Phase.RELEASING, None): {"release", "destroy"},
    (Phase.RELEASED, None): {"run", "destroy"},
    (Phase.STARTING, None): {"run", "destroy"},
    (Phase.RUNNING, None): {"destroy"},
    (Phase.DESTROYING, None): {"destroy"},
    (Phase.DESTROYED, None): set(),
    (Phase.FAILED, Phase.PROVISIONING): {"provision", "destroy"},
    (Phase.FAILED, Phase.CONFIGURING): {"configure", "destroy"},
    (Phase.FAILED, Phase.RELEASING): {"release", "destroy"},
    (Phase.FAILED, Phase.STARTING): {"run", "destroy"},
    (Phase.FAILED, Phase.DESTROYING): {"destroy"},
}


def _environment(phase, failed_at=None):
    return Environment(
        name="alpha",
        provider_kind=ProviderKind.LXD,
        config={},
        phase=phase,
        failed_at=failed_at,
    )


class TestTransitionTable:

    def test_every_phase_is_covered(self):
        covered = {phase for phase, _ in LEGAL}
        assert covered == set(Phase)

    @pytest.mark.parametrize("state", list(LEGAL))
    @pytest.mark.parametrize("operation", OPERATIONS)
    def test_legality_grid(self, state, operation):
        environment = _environment(*state)
        expected = operation in LEGAL[state]

        assert is_allowed(environment, operation) is expected
        if expected:
            assert check_transition(environment, operation).operation == operation
        else:
            with pytest.raises(InvalidTransition) as exc_info:
                check_transition(environment, operation)
            assert exc_info.value.environment == "alpha"
            assert exc_info.value.operation == operation

    def test_in_flight_phases_are_distinct(self):
        assert len(IN_FLIGHT) == len(TRANSITIONS)

    def test_invalid_transition_message_names_failed_phase(self):
        with pytest.raises(InvalidTransition) as exc_info:
            check_transition(_environment(Phase.FAILED, Phase.CONFIGURING), "provision")
        assert "failed(configuring)" in str(exc_info.value)


class TestSuggestNext:

    @pytest.mark.parametrize(
        "state,expected",
        [
            ((Phase.CREATED, None), "provision"),
            ((Phase.PROVISIONED, None), "configure"),
            ((Phase.FAILED, Phase.RELEASING), "release"),
            ((Phase.RUNNING, None), None),
            ((Phase.DESTROYED, None), "delete"),
            ((Phase.FAILED, Phase.DESTROYING), "destroy"),
        ],
    )
    def test_suggestions(self, state, expected):
        assert suggest_next(_environment(*state)) == expected
