"""Filesystem layout for engarde-wizard.

All absolute paths used by provisioning are resolved through a ``Layout``
rooted at ``/`` in production and at a temporary directory in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class NodeRole(Enum):
    """Which side of the tunnel this machine plays."""

    SERVER = "server"
    CLIENT = "client"

    @property
    def peer(self) -> NodeRole:
        return NodeRole.CLIENT if self is NodeRole.SERVER else NodeRole.SERVER


# Service names as registered with systemd
TUNNEL_UNIT = "wg-quick@wg0"
TUNNEL_INTERFACE = "wg0"
RELAY_UNITS = {
    NodeRole.SERVER: "engarde",
    NodeRole.CLIENT: "engarde-client",
}
RELAY_BINARIES = {
    NodeRole.SERVER: "engarde-server",
    NodeRole.CLIENT: "engarde-client",
}

# Run lock shared by both roles
LOCK_FILE = Path("/run/engarde-wizard.pid")


@dataclass(frozen=True)
class Layout:
    """Resolved file locations for one role.

    Args:
        role: Node role the paths belong to.
        root: Filesystem root (default: /).
    """

    role: NodeRole
    root: Path = field(default_factory=lambda: Path("/"))

    def _at(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    @property
    def wireguard_dir(self) -> Path:
        return self._at("/etc/wireguard")

    @property
    def tunnel_config(self) -> Path:
        return self.wireguard_dir / f"{TUNNEL_INTERFACE}.conf"

    @property
    def relay_config(self) -> Path:
        return self._at("/etc/engarde.yml")

    @property
    def relay_unit(self) -> str:
        return RELAY_UNITS[self.role]

    @property
    def relay_unit_file(self) -> Path:
        return self._at(f"/etc/systemd/system/{self.relay_unit}.service")

    @property
    def relay_binary(self) -> Path:
        return self._at(f"/usr/local/bin/{RELAY_BINARIES[self.role]}")

    @property
    def sysctl_file(self) -> Path:
        return self._at("/etc/sysctl.d/99-engarde-wizard.conf")

    @property
    def state_dir(self) -> Path:
        name = "engarde" if self.role is NodeRole.SERVER else "engarde-client"
        return self._at(f"/etc/{name}")

    @property
    def marker(self) -> Path:
        return self.state_dir / "installed.yaml"

    @property
    def bundle(self) -> Path:
        return self._at("/root/engarde-client-bundle.yaml")

    @property
    def sshd_config(self) -> Path:
        return self._at("/etc/ssh/sshd_config")

    @property
    def os_release(self) -> Path:
        return self._at("/etc/os-release")

    @property
    def lock_file(self) -> Path:
        return self._at(str(LOCK_FILE))

    def private_key(self, role: NodeRole) -> Path:
        """Path of the private key for ``role``."""
        return self.wireguard_dir / f"{role.value}_private.key"

    def public_key(self, role: NodeRole) -> Path:
        """Path of the public key for ``role``."""
        return self.wireguard_dir / f"{role.value}_public.key"

    def owned_artifacts(self) -> list[Path]:
        """Every file provisioning may create, for teardown."""
        paths = [
            self.tunnel_config,
            self.relay_config,
            self.relay_unit_file,
            self.sysctl_file,
            self.marker,
        ]
        if self.role is NodeRole.SERVER:
            paths.append(self.bundle)
        return paths
