"""Unit tests for engarde_wizard.shared.paths module."""

from pathlib import Path

import pytest

from engarde_wizard.shared.paths import TUNNEL_UNIT, Layout, NodeRole


@pytest.mark.cli_unit
class TestLayout:
    """Tests for the per-role file layout."""

    def test_server_paths(self):
        """Test server locations match the deployed system."""
        layout = Layout(NodeRole.SERVER)
        assert layout.tunnel_config == Path("/etc/wireguard/wg0.conf")
        assert layout.relay_config == Path("/etc/engarde.yml")
        assert layout.relay_unit == "engarde"
        assert layout.relay_unit_file == Path("/etc/systemd/system/engarde.service")
        assert layout.relay_binary == Path("/usr/local/bin/engarde-server")
        assert layout.marker == Path("/etc/engarde/installed.yaml")
        assert layout.lock_file == Path("/run/engarde-wizard.pid")

    def test_client_paths(self):
        """Test client locations."""
        layout = Layout(NodeRole.CLIENT)
        assert layout.relay_unit == "engarde-client"
        assert layout.relay_binary == Path("/usr/local/bin/engarde-client")
        assert layout.marker == Path("/etc/engarde-client/installed.yaml")

    def test_rooted_layout(self, tmp_path):
        """Test every path resolves under a custom root."""
        layout = Layout(NodeRole.SERVER, tmp_path)
        assert layout.tunnel_config == tmp_path / "etc/wireguard/wg0.conf"
        assert layout.private_key(NodeRole.CLIENT) == tmp_path / "etc/wireguard/client_private.key"
        for path in layout.owned_artifacts():
            assert tmp_path in path.parents

    def test_bundle_owned_by_server_only(self):
        """Test the client does not delete the bundle it was given."""
        assert Layout(NodeRole.SERVER).bundle in Layout(NodeRole.SERVER).owned_artifacts()
        assert Layout(NodeRole.CLIENT).bundle not in Layout(NodeRole.CLIENT).owned_artifacts()

    def test_peer_role(self):
        assert NodeRole.SERVER.peer is NodeRole.CLIENT
        assert NodeRole.CLIENT.peer is NodeRole.SERVER

    def test_tunnel_unit(self):
        assert TUNNEL_UNIT == "wg-quick@wg0"
