"""Shared test fixtures for engarde-wizard tests.

This module provides fixtures for testing provisioning without a real host:
- host: FakeHost patched over subprocess.run
- server_layout / client_layout: file layouts rooted in tmp_path
- engine: relay engine provider that never downloads
- sshd_config: sshd listening on the management-access port
- provisioned_server: a server node provisioned end to end
"""

from unittest.mock import MagicMock, patch

import pytest

from engarde_wizard.config import ProvisionConfig
from engarde_wizard.provision import EngineProvider, Provisioner, ServiceManager
from engarde_wizard.shared import Layout, NodeRole
from tests.mocks import FakeHost

PUBLIC_ADDRESS = "203.0.113.10"


@pytest.fixture
def host():
    """FakeHost answering every subprocess.run call."""
    fake = FakeHost()
    with patch("subprocess.run", side_effect=fake):
        yield fake


@pytest.fixture
def server_layout(tmp_path):
    return Layout(NodeRole.SERVER, tmp_path / "server")


@pytest.fixture
def client_layout(tmp_path):
    return Layout(NodeRole.CLIENT, tmp_path / "client")


@pytest.fixture
def server_config():
    return ProvisionConfig(
        role=NodeRole.SERVER,
        public_address=PUBLIC_ADDRESS,
        public_interface="eth0",
    )


@pytest.fixture
def client_config():
    return ProvisionConfig(role=NodeRole.CLIENT)


@pytest.fixture
def engine():
    """Engine provider that reports a fresh install without downloading."""
    provider = MagicMock(spec=EngineProvider)
    provider.ensure_installed.return_value = True
    return provider


@pytest.fixture
def server_services(server_layout):
    return ServiceManager(server_layout.relay_unit_file.parent)


@pytest.fixture
def sshd_config(server_layout):
    """sshd already moved to the management-access port."""
    path = server_layout.sshd_config
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("PermitRootLogin prohibit-password\nPort 65522\n")
    return path


@pytest.fixture
def provisioned_server(host, server_layout, server_config, server_services, engine, sshd_config):
    """Run server provisioning once and return its ProvisionResult."""
    provisioner = Provisioner(server_layout, services=server_services, engine=engine)
    return provisioner.run(server_config)
