"""
Tests for the Environment record, its serialization and schema migration.
"""

import pytest

from provisionctl.models.environment import (
    SCHEMA_VERSION,
    Environment,
    HistoryEntry,
    Instance,
    Phase,
    ProviderKind,
    validate_environment_name,
)


class TestEnvironmentName:
    """Environment names double as directory and resource names."""

    @pytest.mark.parametrize("name", ["dev", "e1", "staging-2", "e2e-full", "a" * 63])
    def test_accepts_valid_names(self, name):
        assert validate_environment_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "Dev", "1dev", "-dev", "dev-", "dev--x", "dev_x", "dev.x", "a" * 64, "../etc"],
    )
    def test_rejects_invalid_names(self, name):
        with pytest.raises(ValueError):
            validate_environment_name(name)

    def test_environment_validates_name(self):
        with pytest.raises(ValueError):
            Environment(name="Bad Name", provider_kind=ProviderKind.LXD, config={})


class TestInstance:
    def test_requires_every_field(self):
        with pytest.raises(ValueError):
            Instance(id_or_name="i-1", image_reference="", status="running", address="10.0.0.5")

    def test_requires_ip_address(self):
        with pytest.raises(ValueError):
            Instance(id_or_name="i-1", image_reference="base", status="running", address="host")

    def test_accepts_ipv6(self):
        instance = Instance("i-1", "base", "running", "2001:db8::1")
        assert instance.address == "2001:db8::1"


class TestEnvironmentSerialization:

    def test_round_trip_keeps_failed_phase_and_history(self):
        environment = Environment(
            name="e1",
            provider_kind=ProviderKind.HETZNER,
            config={"k": "v"},
            phase=Phase.FAILED,
            failed_at=Phase.CONFIGURING,
            instance=Instance("i-1", "base", "running", "10.0.0.5"),
            history=[
                HistoryEntry(
                    operation="configure",
                    from_phase=Phase.PROVISIONED,
                    to_phase=Phase.FAILED,
                    failed_at=Phase.CONFIGURING,
                    started_at="2026-01-01T00:00:00+00:00",
                    finished_at="2026-01-01T00:01:00+00:00",
                    error="ProcessError: exited with code 1",
                )
            ],
        )

        restored = Environment.from_dict(environment.to_dict())

        assert restored.phase == Phase.FAILED
        assert restored.failed_at == Phase.CONFIGURING
        assert restored.display_phase == "failed(configuring)"
        assert restored.instance == environment.instance
        assert restored.history[0].failed
        assert restored.history[0].error.startswith("ProcessError")

    def test_to_dict_writes_current_schema_version(self):
        environment = Environment(name="e1", provider_kind=ProviderKind.LXD, config={})
        assert environment.to_dict()["schema_version"] == SCHEMA_VERSION

    def test_unknown_fields_are_ignored(self):
        data = Environment(name="e1", provider_kind=ProviderKind.LXD, config={}).to_dict()
        data["added_by_a_newer_release"] = {"x": 1}
        assert Environment.from_dict(data).name == "e1"

    def test_copy_is_independent(self):
        environment = Environment(name="e1", provider_kind=ProviderKind.LXD, config={"a": 1})
        clone = environment.copy()
        clone.config["a"] = 2
        clone.history.append(
            HistoryEntry(operation="provision", from_phase=None, to_phase=Phase.PROVISIONED, finished_at="t")
        )
        assert environment.config["a"] == 1
        assert environment.history == []


class TestSchemaMigration:
    """Records written before schema_version existed."""

    def test_migrates_failed_state_string(self):
        v1 = {
            "name": "legacy",
            "provider": "lxd",
            "state": "configure_failed",
            "config": {},
            "instance": None,
        }

        environment = Environment.from_dict(v1)

        assert environment.phase == Phase.FAILED
        assert environment.failed_at == Phase.CONFIGURING
        assert environment.provider_kind == ProviderKind.LXD
        assert environment.history == []

    def test_migrates_settled_state(self):
        v1 = {"name": "legacy", "provider": "hetzner", "state": "provisioned", "config": {}}
        environment = Environment.from_dict(v1)
        assert environment.phase == Phase.PROVISIONED
        assert environment.failed_at is None
        assert environment.provider_kind == ProviderKind.HETZNER


class TestProvisioningAttempted:

    def test_fresh_environment_was_never_provisioned(self):
        environment = Environment(name="e1", provider_kind=ProviderKind.LXD, config={})
        assert not environment.provisioning_attempted

    def test_failed_provisioning_counts_as_attempted(self):
        environment = Environment(
            name="e1",
            provider_kind=ProviderKind.LXD,
            config={},
            phase=Phase.FAILED,
            failed_at=Phase.PROVISIONING,
        )
        assert environment.provisioning_attempted

    def test_interrupted_provisioning_counts_as_attempted(self):
        environment = Environment(
            name="e1", provider_kind=ProviderKind.LXD, config={}, phase=Phase.PROVISIONING
        )
        assert environment.provisioning_attempted
