"""Artifact rendering for provisioning.

This module renders the complete configuration state of a node: the
WireGuard tunnel config, the engarde relay config, the relay systemd unit
and the server's forwarding sysctl drop-in. Every artifact is a whole
document computed from the current inputs; nothing is patched in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..config import ProvisionConfig
from ..errors import InvalidInputError
from ..shared.files import atomic_write_text
from ..shared.logging import get_logger
from ..shared.paths import TUNNEL_INTERFACE, TUNNEL_UNIT, Layout, NodeRole
from .keys import Identities
from .ports import PortAssignment
from .services import ServiceManager

logger = get_logger(__name__)

MANAGED_HEADER = "# Managed by engarde-wizard. Manual changes are overwritten."
FORWARDING_MARKER = "# engarde-wizard: forwarding-policy"
POLICY_FIELD = "postUpExtra"

ROUTE_SCOPE_ALLOWED_IPS = {
    "split": ("0.0.0.0/1", "128.0.0.0/1"),
    "full": ("0.0.0.0/0", "::/0"),
}

SECRET_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644


@dataclass(frozen=True)
class PolicyState:
    """Optional port forwarding from the server's public side to the client."""

    forwarding_enabled: bool = False
    target: str | None = None

    @classmethod
    def disabled(cls) -> PolicyState:
        return cls()

    @classmethod
    def forwarding_to(cls, target: str) -> PolicyState:
        return cls(forwarding_enabled=True, target=target)


@dataclass(frozen=True)
class TunnelInterface:
    """[Interface] stanza."""

    address: str
    private_key: str = field(repr=False)
    listen_port: int | None = None
    dns: str | None = None
    mtu: int | None = None
    post_up: tuple[str, ...] = ()
    post_down: tuple[str, ...] = ()


@dataclass(frozen=True)
class TunnelPeer:
    """[Peer] stanza."""

    public_key: str
    allowed_ips: tuple[str, ...]
    endpoint: str | None = None
    keepalive: int | None = None


@dataclass(frozen=True)
class TunnelConfig:
    """A wg-quick configuration document."""

    interface: TunnelInterface
    peers: tuple[TunnelPeer, ...]
    markers: tuple[str, ...] = ()

    def render(self) -> str:
        iface = self.interface
        lines = [MANAGED_HEADER, *self.markers, "[Interface]"]
        lines.append(f"Address = {iface.address}")
        if iface.listen_port is not None:
            lines.append(f"ListenPort = {iface.listen_port}")
        lines.append(f"PrivateKey = {iface.private_key}")
        if iface.dns:
            lines.append(f"DNS = {iface.dns}")
        if iface.mtu is not None:
            lines.append(f"MTU = {iface.mtu}")
        lines += [f"PostUp = {cmd}" for cmd in iface.post_up]
        lines += [f"PostDown = {cmd}" for cmd in iface.post_down]

        for peer in self.peers:
            lines += ["", "[Peer]", f"PublicKey = {peer.public_key}"]
            lines.append(f"AllowedIPs = {', '.join(peer.allowed_ips)}")
            if peer.endpoint:
                lines.append(f"Endpoint = {peer.endpoint}")
            if peer.keepalive is not None:
                lines.append(f"PersistentKeepalive = {peer.keepalive}")
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class ServiceUnit:
    """systemd unit descriptor for the relay daemon."""

    name: str
    description: str
    exec_start: str
    restart: str = "always"
    user: str = "root"

    def render(self) -> str:
        return (
            "[Unit]\n"
            f"Description={self.description}\n"
            "After=network.target\n"
            "\n"
            "[Service]\n"
            f"ExecStart={self.exec_start}\n"
            f"Restart={self.restart}\n"
            f"User={self.user}\n"
            "\n"
            "[Install]\n"
            "WantedBy=multi-user.target\n"
        )


@dataclass(frozen=True)
class ArtifactSet:
    """Rendered content of every artifact a node owns."""

    tunnel: str
    relay: str
    relay_unit: str
    sysctl: str | None = None

    def files(self, layout: Layout) -> dict[Path, tuple[str, int]]:
        """Map each destination path to (content, mode)."""
        files = {
            layout.tunnel_config: (self.tunnel, SECRET_FILE_MODE),
            layout.relay_config: (self.relay, SECRET_FILE_MODE),
            layout.relay_unit_file: (self.relay_unit, PUBLIC_FILE_MODE),
        }
        if self.sysctl is not None:
            files[layout.sysctl_file] = (self.sysctl, PUBLIC_FILE_MODE)
        return files


@dataclass
class AppliedArtifacts:
    """Outcome of ArtifactReconciler.apply.

    Services in ``stopped`` were stopped before their config was replaced
    and must be started again. Services in ``restart`` need a restart.
    """

    changed: list[Path]
    stopped: list[str] = field(default_factory=list)
    restart: list[str] = field(default_factory=list)

    @property
    def cycled(self) -> list[str]:
        return self.stopped + self.restart


def nat_rules(interface: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Base FORWARD/MASQUERADE rules for the server tunnel."""
    rules = [
        f"iptables -{{op}} FORWARD -i {interface} -o {TUNNEL_INTERFACE} -j ACCEPT",
        f"iptables -{{op}} FORWARD -i {TUNNEL_INTERFACE} -j ACCEPT",
        f"iptables -t nat -{{op}} POSTROUTING -o {interface} -j MASQUERADE",
    ]
    return (
        tuple(rule.format(op="A") for rule in rules),
        tuple(rule.format(op="D") for rule in rules),
    )


def forwarding_rules(
    interface: str,
    target: str,
    port_range: tuple[int, int],
    reserved: int,
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """DNAT every inbound port outside the managed range to ``target``."""
    low, high = port_range
    excluded = f"{low}:{high}"
    if not low <= reserved <= high:
        excluded += f",{reserved}"
    rules = [
        f"iptables -t nat -{{op}} PREROUTING -i {interface} -p {proto} "
        f"-m multiport ! --dports {excluded} -j DNAT --to-destination {target}"
        for proto in ("tcp", "udp")
    ]
    return (
        tuple(rule.format(op="A") for rule in rules),
        tuple(rule.format(op="D") for rule in rules),
    )


class ArtifactReconciler:
    """Render and persist a node's ArtifactSet."""

    def __init__(self, layout: Layout):
        self.layout = layout

    def render(
        self,
        config: ProvisionConfig,
        identities: Identities,
        ports: PortAssignment,
        policy: PolicyState,
    ) -> ArtifactSet:
        """Compute the full ArtifactSet from the current inputs.

        Args:
            config: Validated provisioning config.
            identities: Local keypair and peer public key.
            ports: Derived port assignment.
            policy: Forwarding policy (server only).

        Returns:
            ArtifactSet; identical inputs give byte-identical output.
        """
        if identities.local.role is not config.role:
            raise InvalidInputError(
                f"Identity for {identities.local.role.value} cannot render a "
                f"{config.role.value} node"
            )
        if policy.forwarding_enabled and config.role is not NodeRole.SERVER:
            raise InvalidInputError("Forwarding policy only applies to the server role")

        unit = ServiceUnit(
            name=self.layout.relay_unit,
            description="Engarde Server" if config.role is NodeRole.SERVER else "Engarde Client",
            exec_start=f"{self.layout.relay_binary} {self.layout.relay_config}",
        )

        if config.role is NodeRole.SERVER:
            tunnel = self._server_tunnel(config, identities, ports, policy)
            relay = self._server_relay(config, ports, policy)
            sysctl = self._sysctl()
        else:
            tunnel = self._client_tunnel(config, identities, ports)
            relay = self._client_relay(config, ports)
            sysctl = None

        return ArtifactSet(
            tunnel=tunnel.render(),
            relay=self._dump(config.role, relay),
            relay_unit=unit.render(),
            sysctl=sysctl,
        )

    def write(self, artifacts: ArtifactSet) -> list[Path]:
        """Atomically replace every artifact whose content differs.

        Returns:
            Paths that changed on disk.
        """
        changed = []
        for path, (content, mode) in artifacts.files(self.layout).items():
            if atomic_write_text(path, content, mode=mode):
                changed.append(path)
                logger.info("artifact_written", path=str(path))
            else:
                logger.debug("artifact_unchanged", path=str(path))
        return changed

    def pending(self, artifacts: ArtifactSet) -> list[Path]:
        """Paths whose content on disk differs from ``artifacts``."""
        return [
            path
            for path, (content, _) in artifacts.files(self.layout).items()
            if not path.exists() or path.read_text(encoding="utf-8") != content
        ]

    def apply(self, artifacts: ArtifactSet, services: ServiceManager) -> AppliedArtifacts:
        """Write ``artifacts``, stopping the tunnel first if its config changes.

        wg-quick runs the PostDown commands of the file on disk when it
        stops, so an active tunnel is brought down while the old file,
        whose rules are installed, is still in place.
        """
        stopped = []
        if self.layout.tunnel_config in self.pending(artifacts) and services.is_active(
            TUNNEL_UNIT
        ):
            services.stop(TUNNEL_UNIT)
            stopped.append(TUNNEL_UNIT)

        changed = self.write(artifacts)
        restart = [s for s in affected_services(self.layout, changed) if s not in stopped]
        return AppliedArtifacts(changed=changed, stopped=stopped, restart=restart)

    def read_relay(self) -> dict[str, Any] | None:
        """Load the persisted relay config section, or None if absent."""
        path = self.layout.relay_config
        if not path.exists():
            return None
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise InvalidInputError(f"Cannot parse {path}: {e}") from e
        section = data.get(self.layout.role.value) if isinstance(data, dict) else None
        if not isinstance(section, dict):
            raise InvalidInputError(f"{path} has no {self.layout.role.value!r} section")
        return section

    def _server_tunnel(
        self,
        config: ProvisionConfig,
        identities: Identities,
        ports: PortAssignment,
        policy: PolicyState,
    ) -> TunnelConfig:
        if not config.public_interface:
            raise InvalidInputError("The server needs its public network interface")

        post_up, post_down = nat_rules(config.public_interface)
        markers: tuple[str, ...] = ()
        if policy.forwarding_enabled:
            up, down = forwarding_rules(
                config.public_interface,
                policy.target or config.client_address,
                config.port_range,
                ports.management_access,
            )
            post_up += up
            post_down += down
            markers = (FORWARDING_MARKER,)

        return TunnelConfig(
            interface=TunnelInterface(
                address=f"{config.server_address}/24",
                private_key=identities.local.private_key,
                listen_port=ports.tunnel,
                mtu=config.mtu,
                post_up=post_up,
                post_down=post_down,
            ),
            peers=(
                TunnelPeer(
                    public_key=identities.peer.public_key,
                    allowed_ips=(f"{config.client_address}/32",),
                ),
            ),
            markers=markers,
        )

    def _client_tunnel(
        self,
        config: ProvisionConfig,
        identities: Identities,
        ports: PortAssignment,
    ) -> TunnelConfig:
        return TunnelConfig(
            interface=TunnelInterface(
                address=f"{config.client_address}/32",
                private_key=identities.local.private_key,
                dns=config.dns,
                mtu=config.mtu,
            ),
            peers=(
                TunnelPeer(
                    public_key=identities.peer.public_key,
                    allowed_ips=ROUTE_SCOPE_ALLOWED_IPS[config.route_scope],
                    endpoint=f"127.0.0.1:{ports.relay}",
                    keepalive=config.keepalive,
                ),
            ),
        )

    def _server_relay(
        self, config: ProvisionConfig, ports: PortAssignment, policy: PolicyState
    ) -> dict[str, Any]:
        relay: dict[str, Any] = {
            "description": config.description,
            "listenAddr": f"0.0.0.0:{ports.relay}",
            "dstAddr": f"127.0.0.1:{ports.tunnel}",
            "clientTimeout": config.client_timeout,
            "writeTimeout": config.write_timeout,
            "webManager": self._web_manager(config, ports),
        }
        if policy.forwarding_enabled:
            up, _ = forwarding_rules(
                config.public_interface,
                policy.target or config.client_address,
                config.port_range,
                ports.management_access,
            )
            relay[POLICY_FIELD] = "; ".join(up)
        return relay

    def _client_relay(self, config: ProvisionConfig, ports: PortAssignment) -> dict[str, Any]:
        if not config.public_address:
            raise InvalidInputError("The client needs the server's public address")
        return {
            "description": config.description,
            "listenAddr": f"127.0.0.1:{ports.relay}",
            "dstAddr": f"{config.public_address}:{ports.relay}",
            "writeTimeout": config.write_timeout,
            "excludedInterfaces": [TUNNEL_INTERFACE, "lo"],
            "dstOverrides": [],
            "webManager": self._web_manager(config, ports),
        }

    def _web_manager(self, config: ProvisionConfig, ports: PortAssignment) -> dict[str, Any]:
        return {
            "listenAddr": f"0.0.0.0:{ports.admin_ui}",
            "username": config.web_username,
            "password": config.web_password,
        }

    def _sysctl(self) -> str:
        return (
            f"{MANAGED_HEADER}\n"
            "net.ipv4.ip_forward = 1\n"
            "net.ipv6.conf.all.forwarding = 1\n"
        )

    def _dump(self, role: NodeRole, relay: dict[str, Any]) -> str:
        body = yaml.safe_dump(
            {role.value: relay}, default_flow_style=False, sort_keys=False
        )
        return f"{MANAGED_HEADER}\n{body}"


def affected_services(layout: Layout, changed: list[Path]) -> list[str]:
    """Services whose configuration is among ``changed`` paths."""
    services = []
    if layout.tunnel_config in changed:
        services.append(TUNNEL_UNIT)
    if layout.relay_config in changed or layout.relay_unit_file in changed:
        services.append(layout.relay_unit)
    return services
