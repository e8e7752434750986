"""Provisioning and teardown flows.

A run recomputes everything from its inputs: ports, identities (reused when
present), artifacts and service registration. The marker is written last,
so an interrupted run is detected as not provisioned and simply re-run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..config import ProvisionConfig
from ..errors import InvalidInputError, MissingConfigError
from ..shared.files import remove_files
from ..shared.logging import get_logger
from ..shared.paths import TUNNEL_UNIT, Layout, NodeRole
from .artifacts import ArtifactReconciler, PolicyState
from .bundle import ClientBundle, write_bundle
from .engine import EngineProvider, get_engine
from .keys import Identities, Identity, KeyStore
from .policy import PolicyToggle
from .ports import PortAssignment, ports_for
from .services import ServiceManager
from .state import write_marker

logger = get_logger(__name__)


@dataclass
class ProvisionResult:
    """Summary of one provisioning run."""

    config: ProvisionConfig
    ports: PortAssignment
    changed: list[Path] = field(default_factory=list)
    restarted: list[str] = field(default_factory=list)
    engine_downloaded: bool = False
    bundle_path: Path | None = None


class Provisioner:
    """Drive a node from any state to fully provisioned."""

    def __init__(
        self,
        layout: Layout,
        services: ServiceManager | None = None,
        engine: EngineProvider | None = None,
    ):
        self.layout = layout
        self.services = services or ServiceManager(layout.relay_unit_file.parent)
        self.engine = engine
        self.keys = KeyStore(layout)
        self.reconciler = ArtifactReconciler(layout)

    def run(self, config: ProvisionConfig, bundle: ClientBundle | None = None) -> ProvisionResult:
        """Provision this node.

        Args:
            config: Validated configuration for ``layout.role``.
            bundle: Client bundle, required on the client role.

        Returns:
            ProvisionResult describing what changed.
        """
        if config.role is not self.layout.role:
            raise InvalidInputError(
                f"Config is for the {config.role.value} role, layout for {self.layout.role.value}"
            )
        if config.role is NodeRole.CLIENT:
            if bundle is None:
                raise MissingConfigError("The client role needs the bundle written by the server")
            config = bundle.apply_to(config)
        config.validate()
        if config.role is NodeRole.SERVER and not (
            config.public_address and config.public_interface
        ):
            raise InvalidInputError("The server needs its public address and network interface")

        log = logger.bind(role=config.role.value)
        ports = ports_for(config)
        log.info("ports_allocated", **{k.replace("-", "_"): v for k, v in ports.as_dict().items()})

        identities, client_identity = self._identities(config, bundle)

        engine = self.engine or get_engine(config.engine)
        downloaded = engine.ensure_installed(config.role, self.layout.relay_binary)

        artifacts = self.reconciler.render(config, identities, ports, self._policy(config))
        applied = self.reconciler.apply(artifacts, self.services)

        self.services.install(self.layout.relay_unit)
        if config.role is NodeRole.SERVER:
            self.services.apply_sysctl(self.layout.sysctl_file)
        self.services.ensure_running(
            self.layout.relay_unit, restart=self.layout.relay_unit in applied.restart
        )
        self.services.ensure_running(TUNNEL_UNIT, restart=TUNNEL_UNIT in applied.restart)

        bundle_path = None
        if config.role is NodeRole.SERVER:
            bundle_path = self._write_bundle(config, ports, identities.local, client_identity)

        write_marker(self.layout, config)
        log.info("provisioned", changed=len(applied.changed), restarted=applied.cycled)
        return ProvisionResult(
            config=config,
            ports=ports,
            changed=applied.changed,
            restarted=applied.cycled,
            engine_downloaded=downloaded,
            bundle_path=bundle_path,
        )

    def export_bundle(self, config: ProvisionConfig) -> Path:
        """Regenerate the client bundle from the persisted keys."""
        if config.role is not NodeRole.SERVER:
            raise InvalidInputError("Only the server role can export a client bundle")
        return self._write_bundle(
            config,
            ports_for(config),
            self.keys.load_identity(NodeRole.SERVER),
            self.keys.load_identity(NodeRole.CLIENT),
        )

    def teardown(self) -> list[Path]:
        """Remove both services, every artifact, all keys and the engine binary.

        Returns:
            Files that were deleted.
        """
        self.services.remove(self.layout.relay_unit, owned=True)
        self.services.remove(TUNNEL_UNIT)

        removed = remove_files(self.layout.owned_artifacts() + [self.layout.relay_binary])
        removed += self.keys.remove()
        for directory in (self.layout.state_dir, self.layout.wireguard_dir):
            if directory.exists() and not any(directory.iterdir()):
                directory.rmdir()
        logger.info("teardown_complete", removed=len(removed))
        return removed

    def _identities(
        self, config: ProvisionConfig, bundle: ClientBundle | None
    ) -> tuple[Identities, Identity | None]:
        if config.role is NodeRole.SERVER:
            server = self.keys.ensure_identity(NodeRole.SERVER)
            client = self.keys.ensure_identity(NodeRole.CLIENT)
            return Identities(local=server, peer=client.public_only()), client

        client = self.keys.import_identity(NodeRole.CLIENT, bundle.client_private_key)
        if client.public_key != bundle.client_public_key:
            raise InvalidInputError("Bundle client public key does not match its private key")
        server = bundle.server_identity()
        self.keys.store_peer(server)
        return Identities(local=client, peer=server), None

    def _policy(self, config: ProvisionConfig) -> PolicyState:
        """Keep the forwarding policy of an earlier, interrupted run."""
        if config.role is not NodeRole.SERVER:
            return PolicyState.disabled()
        try:
            return PolicyToggle(self.layout, config, self.services).current()
        except InvalidInputError:
            logger.warning("relay_config_unreadable", path=str(self.layout.relay_config))
            return PolicyState.disabled()

    def _write_bundle(
        self,
        config: ProvisionConfig,
        ports: PortAssignment,
        server: Identity,
        client: Identity,
    ) -> Path:
        bundle = ClientBundle.build(config, ports, server, client)
        write_bundle(self.layout.bundle, bundle)
        logger.info("bundle_written", path=str(self.layout.bundle))
        return self.layout.bundle
