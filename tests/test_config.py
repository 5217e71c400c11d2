"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest
import yaml

from vaultsync.config import MASK, ConfigError, SyncConfig, load_config, parse_address


class TestParseAddress:
    def test_host_port(self):
        assert parse_address("0.0.0.0:8202") == ("0.0.0.0", 8202)

    def test_ipv6(self):
        assert parse_address("[::1]:8202") == ("::1", 8202)

    @pytest.mark.parametrize("value", ["8202", "host:", "host:abc", ":8202", "host:70000"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_address(value)


class TestSyncConfig:
    """Tests for model validation."""

    def test_defaults(self, config_data):
        del config_data["id"]
        del config_data["full_sync_interval"]
        del config_data["bind"]
        config = SyncConfig(**config_data)
        assert config.id == "vault-sync"
        assert config.full_sync_interval == 3600
        assert config.bind_address == ("0.0.0.0", 8202)
        assert config.dry_run is False
        assert config.src.kv_version == 1
        assert config.src.renew_fraction == 0.5

    def test_prefix_slashes_stripped(self, config_data):
        config_data["src"]["prefix"] = "/secret/app/"
        assert SyncConfig(**config_data).src.prefix == "secret/app"

    def test_empty_prefix_rejected(self, config_data):
        config_data["src"]["prefix"] = "/"
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_mount_defaults_to_first_segment(self, sync_config):
        assert sync_config.src.mount == "secret"

    def test_prefix_outside_mount_rejected(self, config_data):
        config_data["src"]["mount"] = "kv"
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_kv_version_checked(self, config_data):
        config_data["src"]["kv_version"] = 3
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_interval_positive(self, config_data):
        config_data["full_sync_interval"] = 0
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_external_address_required(self, config_data):
        del config_data["external_address"]
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_approle_auth(self, config_data):
        config_data["src"]["auth"] = {"role_id": "r", "secret_id": "s"}
        assert SyncConfig(**config_data).src.auth.uses_approle

    def test_auth_requires_credentials(self, config_data):
        config_data["src"]["auth"] = {}
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_auth_rejects_half_approle(self, config_data):
        config_data["src"]["auth"] = {"role_id": "r"}
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_auth_rejects_both_methods(self, config_data):
        config_data["src"]["auth"] = {"token": "t", "role_id": "r", "secret_id": "s"}
        with pytest.raises(ValueError):
            SyncConfig(**config_data)

    def test_redacted_masks_credentials(self, config_data):
        config_data["dst"]["auth"] = {"role_id": "r", "secret_id": "s"}
        data = SyncConfig(**config_data).redacted()
        assert data["src"]["auth"]["token"] == MASK
        assert data["dst"]["auth"]["secret_id"] == MASK
        assert data["dst"]["auth"]["role_id"] == "r"


class TestLoadConfig:
    """Tests for reading the YAML file."""

    def test_load(self, config_file):
        config = load_config(config_file, environ={})
        assert config.src.prefix == "secret/app"
        assert config.dst.prefix == "secret/app-copy"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml", environ={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("src: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path, environ={})

    def test_validation_error_names_file(self, tmp_path, config_data):
        config_data["full_sync_interval"] = -1
        path = tmp_path / "vault-sync.yaml"
        path.write_text(yaml.dump(config_data))
        with pytest.raises(ConfigError, match="vault-sync.yaml"):
            load_config(path, environ={})

    def test_env_token_override(self, config_file):
        config = load_config(config_file, environ={"VAULT_SYNC_SRC_TOKEN": "from-env"})
        assert config.src.auth.token == "from-env"
        assert config.dst.auth.token == "dst-token"

    def test_env_approle_replaces_token(self, config_file):
        environ = {"VAULT_SYNC_DST_ROLE_ID": "role", "VAULT_SYNC_DST_SECRET_ID": "secret"}
        config = load_config(config_file, environ=environ)
        assert config.dst.auth.uses_approle
        assert config.dst.auth.token is None

    def test_env_supplies_missing_credentials(self, tmp_path, config_data):
        del config_data["src"]["auth"]
        path = tmp_path / "vault-sync.yaml"
        path.write_text(yaml.dump(config_data))
        config = load_config(path, environ={"VAULT_SYNC_SRC_TOKEN": "from-env"})
        assert config.src.auth.token == "from-env"
