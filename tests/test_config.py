"""
Tests for runtime settings and the user configuration schema.
"""

import json

import pytest
import yaml

from provisionctl.config import ProvisionctlSettings, load_settings, parse_strict_bool
from provisionctl.errors import ConfigError
from provisionctl.models.config import (
    EnvironmentConfig,
    HetznerProviderConfig,
    LxdProviderConfig,
    load_environment_config,
)
from provisionctl.models.environment import ProviderKind


class TestSettings:

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = load_settings()

        assert settings.data_dir == "./data"
        assert settings.build_dir == "./build"
        assert settings.tofu_binary == "tofu"
        assert settings.ansible_playbook_binary == "ansible-playbook"
        assert settings.tool_timeout_seconds == 1800
        assert settings.cache_update_attempts == 3
        assert settings.log_format == "text"
        assert not settings.skip_cache_update_enabled
        assert not settings.skip_firewall_enabled

    def test_environment_variables(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PROVISIONCTL_DATA_DIR", "/srv/provisionctl")
        monkeypatch.setenv("PROVISIONCTL_TOOL_TIMEOUT_SECONDS", "60")
        monkeypatch.setenv("PROVISIONCTL_SKIP_FIREWALL", "true")

        settings = ProvisionctlSettings()

        assert settings.data_dir == "/srv/provisionctl"
        assert settings.tool_timeout_seconds == 60
        assert settings.skip_firewall_enabled

    def test_overrides_win_over_environment(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PROVISIONCTL_TOFU_BINARY", "/usr/bin/tofu")
        assert load_settings(tofu_binary="/opt/tofu").tofu_binary == "/opt/tofu"

    def test_paths_are_expanded(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        settings = load_settings(data_dir="~/state")
        assert settings.data_path == tmp_path / "state"

    @pytest.mark.parametrize("value", ["True", "TRUE", "1", "yes", "", "on"])
    def test_flags_accept_only_literals(self, monkeypatch, tmp_path, value):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError):
            load_settings(skip_cache_update=value)

    def test_invalid_timeout(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError):
            load_settings(tool_timeout_seconds=0)

    def test_parse_strict_bool(self):
        assert parse_strict_bool("true", "flag") is True
        assert parse_strict_bool("false", "flag") is False
        with pytest.raises(ConfigError, match="flag"):
            parse_strict_bool("False", "flag")


class TestEnvironmentConfig:

    def test_lxd_config(self, lxd_config_data):
        config = EnvironmentConfig.model_validate(lxd_config_data)

        assert config.name == "e1"
        assert config.provider_kind == ProviderKind.LXD
        assert isinstance(config.provider, LxdProviderConfig)
        assert config.provider.image == "ubuntu:24.04"
        assert config.environment.resolved_instance_name == "provisionctl-e1"
        assert config.ssh_credentials.username == "deployer"
        assert config.ssh_credentials.port == 22
        assert config.workload.ports == ["6969/udp", "7070", "1212"]

    def test_hetzner_config(self, hetzner_config_data):
        config = EnvironmentConfig.model_validate(hetzner_config_data)

        assert config.provider_kind == ProviderKind.HETZNER
        assert isinstance(config.provider, HetznerProviderConfig)
        assert config.provider.location == "fsn1"
        assert "hcloudtoken123" not in repr(config.provider)

    def test_unknown_provider(self, lxd_config_data):
        lxd_config_data["provider"] = {"provider": "aws", "region": "eu-west-1"}
        with pytest.raises(ValueError):
            EnvironmentConfig.model_validate(lxd_config_data)

    def test_provider_fields_are_not_mixed(self, lxd_config_data):
        lxd_config_data["provider"]["api_token"] = "x"
        with pytest.raises(ValueError):
            EnvironmentConfig.model_validate(lxd_config_data)

    @pytest.mark.parametrize("port", ["0", "70000", "7070/sctp", "abc", "-1"])
    def test_invalid_ports(self, lxd_config_data, port):
        lxd_config_data["workload"]["ports"] = [port]
        with pytest.raises(ValueError):
            EnvironmentConfig.model_validate(lxd_config_data)

    def test_invalid_environment_variable_name(self, lxd_config_data):
        lxd_config_data["workload"]["environment"] = {"BAD-NAME": "x"}
        with pytest.raises(ValueError):
            EnvironmentConfig.model_validate(lxd_config_data)

    def test_invalid_environment_name(self, lxd_config_data):
        lxd_config_data["environment"]["name"] = "Not Valid"
        with pytest.raises(ValueError):
            EnvironmentConfig.model_validate(lxd_config_data)

    def test_record_round_trip(self, lxd_config_data):
        config = EnvironmentConfig.model_validate(lxd_config_data)
        record = config.to_record()

        assert json.loads(json.dumps(record)) == record
        assert EnvironmentConfig.from_record(record) == config

    def test_invalid_record(self):
        with pytest.raises(ConfigError, match="stored configuration"):
            EnvironmentConfig.from_record({"environment": {"name": "e1"}})

    def test_read_public_key(self, lxd_config_data):
        config = EnvironmentConfig.model_validate(lxd_config_data)
        assert config.ssh_credentials.read_public_key().startswith("ssh-ed25519 ")

    def test_missing_public_key(self, lxd_config_data, tmp_path):
        lxd_config_data["ssh_credentials"]["public_key_path"] = str(tmp_path / "missing.pub")
        config = EnvironmentConfig.model_validate(lxd_config_data)
        with pytest.raises(ConfigError, match="public key"):
            config.ssh_credentials.read_public_key()


class TestLoadEnvironmentConfig:

    def test_yaml_file(self, tmp_path, lxd_config_data):
        path = tmp_path / "e1.yml"
        path.write_text(yaml.safe_dump(lxd_config_data))
        assert load_environment_config(path).name == "e1"

    def test_json_file(self, tmp_path, lxd_config_data):
        path = tmp_path / "e1.json"
        path.write_text(json.dumps(lxd_config_data))
        assert load_environment_config(path).name == "e1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read"):
            load_environment_config(tmp_path / "missing.yml")

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="cannot parse"):
            load_environment_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_environment_config(path)

    def test_validation_errors_name_the_field(self, tmp_path, lxd_config_data):
        del lxd_config_data["workload"]["image"]
        path = tmp_path / "e1.yml"
        path.write_text(yaml.safe_dump(lxd_config_data))
        with pytest.raises(ConfigError, match=r"workload\.image"):
            load_environment_config(path)
