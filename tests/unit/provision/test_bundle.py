"""Unit tests for the client bundle."""

from dataclasses import replace

import pytest
import yaml

from engarde_wizard.config import ProvisionConfig
from engarde_wizard.errors import InvalidInputError, MissingConfigError
from engarde_wizard.provision.bundle import ClientBundle, load_bundle, write_bundle
from engarde_wizard.provision.keys import Identity
from engarde_wizard.provision.ports import allocate_ports
from engarde_wizard.shared import NodeRole
from tests.mocks import make_key


@pytest.fixture
def bundle(server_config):
    return ClientBundle.build(
        server_config,
        allocate_ports(65510),
        Identity(NodeRole.SERVER, make_key(1), make_key(2)),
        Identity(NodeRole.CLIENT, make_key(3), make_key(4)),
    )


class TestClientBundle:
    """Tests for ClientBundle."""

    def test_build(self, bundle):
        assert bundle.server_endpoint == "203.0.113.10"
        assert bundle.server_public_key == make_key(1)
        assert bundle.client_private_key == make_key(4)
        assert bundle.base_port == 65510
        assert bundle.relay_port == 65511
        assert make_key(4) not in repr(bundle)

    def test_build_needs_public_address(self, server_config):
        with pytest.raises(InvalidInputError):
            ClientBundle.build(
                replace(server_config, public_address=None),
                allocate_ports(65500),
                Identity(NodeRole.SERVER, make_key(1), make_key(2)),
                Identity(NodeRole.CLIENT, make_key(3), make_key(4)),
            )

    def test_apply_to(self, bundle):
        """Test server-decided values override the client's config."""
        config = bundle.apply_to(ProvisionConfig(role=NodeRole.CLIENT, mtu=1400))
        assert config.public_address == "203.0.113.10"
        assert config.base_port == 65510
        assert config.mtu == 1320
        assert config.get_source("mtu") == "bundle"
        assert config.validate() is config

    def test_validate_relay_port(self, bundle):
        with pytest.raises(InvalidInputError, match="Relay port"):
            replace(bundle, relay_port=65600).validate()

    def test_validate_keys(self, bundle):
        with pytest.raises(InvalidInputError):
            replace(bundle, server_public_key="nope").validate()


class TestBundleFile:
    """Tests for write_bundle and load_bundle."""

    def test_round_trip(self, tmp_path, bundle):
        path = tmp_path / "engarde-client-bundle.yaml"
        assert write_bundle(path, bundle) is True
        assert path.stat().st_mode & 0o777 == 0o600
        assert load_bundle(path) == bundle

    def test_missing(self, tmp_path):
        with pytest.raises(MissingConfigError, match="Copy it from the server"):
            load_bundle(tmp_path / "engarde-client-bundle.yaml")

    def test_missing_fields(self, tmp_path, bundle):
        data = bundle.to_dict()
        del data["server_public_key"]
        path = tmp_path / "bundle.yaml"
        path.write_text(yaml.safe_dump(data))
        with pytest.raises(InvalidInputError, match="server_public_key"):
            load_bundle(path)

    def test_non_integer_port(self, tmp_path, bundle):
        data = bundle.to_dict()
        data["base_port"] = "65510"
        path = tmp_path / "bundle.yaml"
        path.write_text(yaml.safe_dump(data))
        with pytest.raises(InvalidInputError, match="base_port"):
            load_bundle(path)

    def test_not_yaml_mapping(self, tmp_path):
        path = tmp_path / "bundle.yaml"
        path.write_text("just text\n")
        with pytest.raises(InvalidInputError):
            load_bundle(path)
