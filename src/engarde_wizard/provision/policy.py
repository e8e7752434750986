"""Forwarding policy toggle.

The forwarding clause lives in the relay config as the ``postUpExtra``
field, with matching DNAT rules in the tunnel config. Toggling re-renders
the whole ArtifactSet with the new PolicyState instead of editing text, so
enabling and then disabling restores the original documents exactly.

The DNAT rules claim every inbound port outside the engarde range except
the management-access port, so forwarding is refused while sshd listens
anywhere else.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..config import ProvisionConfig
from ..errors import InvalidInputError
from ..shared.logging import get_logger
from ..shared.paths import Layout, NodeRole
from .artifacts import POLICY_FIELD, ArtifactReconciler, PolicyState
from .keys import Identities, KeyStore
from .ports import PortAssignment, ports_for
from .services import ServiceManager
from .sshd import DEFAULT_SSH_PORT, current_ssh_port

logger = get_logger(__name__)


@dataclass
class ToggleResult:
    """Outcome of a toggle. ``restarted`` lists the services that were cycled."""

    changed: bool
    enabled: bool
    restarted: list[str]


def load_identities(layout: Layout, config: ProvisionConfig) -> Identities:
    """Read the persisted identities of a provisioned node. Never generates."""
    keys = KeyStore(layout)
    return Identities(
        local=keys.load_identity(config.role),
        peer=keys.load_peer(config.role.peer),
    )


class PolicyToggle:
    """Turn the server's forwarding policy on or off idempotently."""

    def __init__(
        self,
        layout: Layout,
        config: ProvisionConfig,
        services: ServiceManager | None = None,
    ):
        if config.role is not NodeRole.SERVER:
            raise InvalidInputError("Forwarding policy only applies to the server role")
        self.layout = layout
        self.config = config
        self.services = services or ServiceManager(layout.relay_unit_file.parent)
        self.reconciler = ArtifactReconciler(layout)

    def is_enabled(self) -> bool:
        """Whether the persisted relay artifact carries the forwarding clause."""
        relay = self.reconciler.read_relay()
        return relay is not None and POLICY_FIELD in relay

    def current(self) -> PolicyState:
        if self.is_enabled():
            return PolicyState.forwarding_to(self.config.client_address)
        return PolicyState.disabled()

    def enable(self) -> ToggleResult:
        """Start forwarding to the client.

        Raises:
            InvalidInputError: If sshd is not on the management-access port.
        """
        if self.is_enabled():
            logger.info("forwarding_already_enabled")
            return ToggleResult(changed=False, enabled=True, restarted=[])
        ports = ports_for(self.config)
        self._check_management_access(ports)
        return self._apply(PolicyState.forwarding_to(self.config.client_address), ports)

    def disable(self) -> ToggleResult:
        if not self.is_enabled():
            logger.info("forwarding_already_disabled")
            return ToggleResult(changed=False, enabled=False, restarted=[])
        return self._apply(PolicyState.disabled(), ports_for(self.config))

    def _check_management_access(self, ports: PortAssignment) -> None:
        sshd_config = self.layout.sshd_config
        ssh_port = DEFAULT_SSH_PORT
        if sshd_config.exists():
            ssh_port = current_ssh_port(sshd_config.read_text())
        if ssh_port != ports.management_access:
            raise InvalidInputError(
                f"SSH listens on port {ssh_port}, which forwarding would send to the client. "
                f"Move SSH to port {ports.management_access} first."
            )

    def _apply(self, policy: PolicyState, ports: PortAssignment) -> ToggleResult:
        identities = load_identities(self.layout, self.config)
        artifacts = self.reconciler.render(self.config, identities, ports, policy)
        applied = self.reconciler.apply(artifacts, self.services)
        for name in applied.stopped:
            self.services.start(name)
        for name in applied.restart:
            self.services.restart(name)
        logger.info(
            "forwarding_policy_applied",
            enabled=policy.forwarding_enabled,
            changed=[str(p) for p in applied.changed],
            restarted=applied.cycled,
        )
        return ToggleResult(
            changed=bool(applied.changed),
            enabled=policy.forwarding_enabled,
            restarted=applied.cycled,
        )
