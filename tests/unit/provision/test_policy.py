"""Unit tests for the forwarding policy toggle."""

import pytest

from engarde_wizard.config import ProvisionConfig
from engarde_wizard.errors import InvalidInputError
from engarde_wizard.provision.artifacts import PolicyState
from engarde_wizard.provision.policy import PolicyToggle
from engarde_wizard.shared import TUNNEL_UNIT, NodeRole
from tests.mocks import RecordingServices


def snapshot(layout):
    return {
        path: path.read_text()
        for path in (layout.tunnel_config, layout.relay_config, layout.relay_unit_file)
    }


def post_down(text):
    return [line for line in text.splitlines() if line.startswith("PostDown")]


def systemctl_ops(host, unit):
    return [call[1] for call in host.calls if call[0] == "systemctl" and call[-1] == unit]


@pytest.mark.provision_unit
class TestPolicyToggle:
    """Tests for PolicyToggle on a provisioned server."""

    def test_disabled_after_provisioning(self, provisioned_server, server_layout, server_config):
        toggle = PolicyToggle(server_layout, server_config)
        assert toggle.is_enabled() is False
        assert toggle.current() == PolicyState.disabled()

    def test_enable(self, provisioned_server, server_layout, server_config):
        """Test enabling rewrites tunnel and relay configs."""
        result = PolicyToggle(server_layout, server_config).enable()
        assert result.changed is True
        assert result.enabled is True
        assert set(result.restarted) == {TUNNEL_UNIT, "engarde"}
        assert PolicyToggle(server_layout, server_config).is_enabled()

    def test_enable_twice_is_idempotent(self, provisioned_server, server_layout, server_config):
        toggle = PolicyToggle(server_layout, server_config)
        toggle.enable()
        after_first = snapshot(server_layout)

        result = toggle.enable()
        assert result.changed is False
        assert result.restarted == []
        assert snapshot(server_layout) == after_first

    def test_round_trip_restores_documents(
        self, provisioned_server, server_layout, server_config
    ):
        """Test enable then disable returns byte-identical artifacts."""
        before = snapshot(server_layout)
        toggle = PolicyToggle(server_layout, server_config)
        toggle.enable()
        assert snapshot(server_layout) != before

        result = toggle.disable()
        assert result.changed is True
        assert result.enabled is False
        assert snapshot(server_layout) == before

    def test_disable_when_disabled(self, provisioned_server, server_layout, server_config):
        result = PolicyToggle(server_layout, server_config).disable()
        assert result.changed is False

    def test_client_role_rejected(self, client_layout):
        with pytest.raises(InvalidInputError):
            PolicyToggle(client_layout, ProvisionConfig(role=NodeRole.CLIENT))


@pytest.mark.provision_unit
class TestTunnelCycle:
    """Tests that wg-quick tears down the rules that were actually installed."""

    def test_disable_stops_tunnel_with_forwarding_rules_on_disk(
        self, host, provisioned_server, server_layout, server_config
    ):
        PolicyToggle(server_layout, server_config).enable()
        services = RecordingServices(server_layout)
        host.calls.clear()

        PolicyToggle(server_layout, server_config, services).disable()

        assert len(services.seen_on_stop) == 1
        assert any("PREROUTING" in line for line in post_down(services.seen_on_stop[0]))
        assert "PREROUTING" not in server_layout.tunnel_config.read_text()
        assert systemctl_ops(host, TUNNEL_UNIT)[-2:] == ["stop", "start"]
        assert "restart" not in systemctl_ops(host, TUNNEL_UNIT)
        assert TUNNEL_UNIT in host.active

    def test_enable_stops_tunnel_before_adding_rules(
        self, host, provisioned_server, server_layout, server_config
    ):
        """Test the old file, without DNAT PostDown lines, is what wg-quick stops."""
        services = RecordingServices(server_layout)

        PolicyToggle(server_layout, server_config, services).enable()

        assert len(services.seen_on_stop) == 1
        assert not any("PREROUTING" in line for line in post_down(services.seen_on_stop[0]))
        on_disk = server_layout.tunnel_config.read_text()
        assert any("PREROUTING" in line for line in post_down(on_disk))

    def test_inactive_tunnel_not_stopped(
        self, host, provisioned_server, server_layout, server_config
    ):
        host.active.discard(TUNNEL_UNIT)
        services = RecordingServices(server_layout)

        result = PolicyToggle(server_layout, server_config, services).enable()

        assert services.seen_on_stop == []
        assert TUNNEL_UNIT in result.restarted


@pytest.mark.provision_unit
class TestManagementAccessGuard:
    """Tests that forwarding never captures the operator's SSH port."""

    def test_refused_while_ssh_on_default_port(
        self, host, provisioned_server, server_layout, server_config, sshd_config
    ):
        sshd_config.write_text("Port 22\n")
        before = snapshot(server_layout)
        host.calls.clear()

        with pytest.raises(InvalidInputError, match="Move SSH to port 65522"):
            PolicyToggle(server_layout, server_config).enable()

        assert snapshot(server_layout) == before
        assert not host.ran("systemctl", "stop")
        assert not host.ran("systemctl", "restart")

    def test_refused_without_sshd_config(
        self, provisioned_server, server_layout, server_config, sshd_config
    ):
        """Test a missing sshd_config counts as sshd on port 22."""
        sshd_config.unlink()
        with pytest.raises(InvalidInputError, match="port 22"):
            PolicyToggle(server_layout, server_config).enable()
        assert not PolicyToggle(server_layout, server_config).is_enabled()

    def test_disable_allowed_while_ssh_on_default_port(
        self, provisioned_server, server_layout, server_config, sshd_config
    ):
        toggle = PolicyToggle(server_layout, server_config)
        toggle.enable()
        sshd_config.write_text("Port 22\n")
        assert toggle.disable().changed is True
