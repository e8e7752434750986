"""Unit tests for provisioning configuration."""

from dataclasses import replace

import pytest

from engarde_wizard.config import (
    DEFAULT_BASE_PORT,
    DEFAULT_MTU,
    ProvisionConfig,
    load_config,
    parse_ipv4,
)
from engarde_wizard.errors import InvalidInputError, MissingConfigError
from engarde_wizard.shared import NodeRole


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Point the default config path at an empty directory."""
    monkeypatch.setenv("ENGARDE_WIZARD_CONFIG", str(tmp_path / "absent.yaml"))
    for name in ("BASE_PORT", "MTU", "ENGINE", "ROLE"):
        monkeypatch.delenv(f"ENGARDE_WIZARD_{name}", raising=False)


class TestProvisionConfig:
    """Tests for ProvisionConfig defaults and validation."""

    def test_defaults(self):
        """Test defaults match the reference deployment."""
        config = ProvisionConfig()
        assert config.role is NodeRole.SERVER
        assert config.base_port == DEFAULT_BASE_PORT == 65500
        assert config.reserved_port == 65522
        assert config.port_range == (65500, 65535)
        assert config.mtu == DEFAULT_MTU == 1320
        assert config.route_scope == "split"
        assert config.validate() is config

    def test_description_by_role(self):
        """Test relay description defaults per role."""
        assert ProvisionConfig().description == "Engarde Server Instance"
        assert ProvisionConfig(role=NodeRole.CLIENT).description == "Engarde Client Instance"
        assert ProvisionConfig(relay_description="home").description == "home"

    @pytest.mark.parametrize(
        "changes",
        [
            {"engine": "python"},
            {"route_scope": "most"},
            {"server_address": "10.0.0.300"},
            {"client_address": "10.0.0.1"},
            {"client_address": "10.0.1.2"},
            {"public_address": "example.org"},
            {"public_interface": "  "},
            {"port_range_low": 65535, "port_range_high": 65500},
            {"mtu": 9000},
            {"dns": "dns.example"},
            {"web_password": ""},
            {"keepalive": 0},
        ],
    )
    def test_validate_rejects(self, changes):
        """Test each invalid field raises InvalidInputError."""
        with pytest.raises(InvalidInputError):
            replace(ProvisionConfig(), **changes).validate()

    def test_dict_round_trip(self):
        """Test the marker form restores the same config."""
        config = ProvisionConfig(
            role=NodeRole.SERVER, public_address="203.0.113.10", public_interface="eth0"
        )
        data = config.to_dict()
        assert data["role"] == "server"
        assert "_sources" not in data
        assert ProvisionConfig.from_dict(data) == config

    def test_from_dict_rejects_unknown_keys(self):
        """Test typos in config files are reported."""
        with pytest.raises(InvalidInputError, match="basse_port"):
            ProvisionConfig.from_dict({"basse_port": 65500})

    def test_from_dict_coerces_strings(self):
        """Test string values from the environment are coerced."""
        config = ProvisionConfig.from_dict({"role": "CLIENT", "mtu": "1400"})
        assert config.role is NodeRole.CLIENT
        assert config.mtu == 1400

    def test_from_dict_rejects_bad_integer(self):
        """Test non-numeric integer fields."""
        with pytest.raises(InvalidInputError, match="mtu"):
            ProvisionConfig.from_dict({"mtu": "big"})

    def test_with_overrides_records_prompt_source(self):
        """Test prompted values are tracked."""
        config = ProvisionConfig().with_overrides(base_port=65510)
        assert config.base_port == 65510
        assert config.get_source("base_port") == "prompt"
        assert config.get_source("mtu") == "default"


class TestParseIpv4:
    """Tests for parse_ipv4."""

    def test_valid(self):
        assert str(parse_ipv4(" 10.0.0.1 ", "address")) == "10.0.0.1"

    @pytest.mark.parametrize("value", ["", "10.0.0", "::1", "host.example", None])
    def test_invalid(self, value):
        with pytest.raises(InvalidInputError):
            parse_ipv4(value, "address")


class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_defaults_without_file(self):
        """Test a missing default config file is fine."""
        config = load_config()
        assert config == ProvisionConfig()
        assert config.get_source("base_port") == "default"

    def test_missing_explicit_file(self, tmp_path):
        """Test an explicit config path must exist."""
        with pytest.raises(MissingConfigError):
            load_config(tmp_path / "nope.yaml")

    def test_file_overrides_defaults(self, tmp_path):
        """Test values from the YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text("base_port: 65510\nengine: rust\n")
        config = load_config(path)
        assert config.base_port == 65510
        assert config.engine == "rust"
        assert config.get_source("base_port") == "config file"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        """Test environment variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("base_port: 65510\n")
        monkeypatch.setenv("ENGARDE_WIZARD_BASE_PORT", "65520")
        config = load_config(path)
        assert config.base_port == 65520
        assert config.get_source("base_port") == "environment"

    def test_role_argument_wins(self, tmp_path):
        """Test the command-line role overrides the file."""
        path = tmp_path / "config.yaml"
        path.write_text("role: server\n")
        config = load_config(path, role=NodeRole.CLIENT)
        assert config.role is NodeRole.CLIENT
        assert config.get_source("role") == "command line"

    def test_default_path_from_env(self, tmp_path, monkeypatch):
        """Test ENGARDE_WIZARD_CONFIG selects the default file."""
        path = tmp_path / "custom.yaml"
        path.write_text("mtu: 1400\n")
        monkeypatch.setenv("ENGARDE_WIZARD_CONFIG", str(path))
        assert load_config().mtu == 1400

    def test_invalid_yaml(self, tmp_path):
        """Test unparseable files raise InvalidInputError."""
        path = tmp_path / "config.yaml"
        path.write_text("base_port: [65500\n")
        with pytest.raises(InvalidInputError):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        """Test a YAML list is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("- 65500\n")
        with pytest.raises(InvalidInputError):
            load_config(path)
