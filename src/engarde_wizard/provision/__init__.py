"""Provisioning package for engarde-wizard.

This package provides the engine behind the `engarde-wizard` command which:
1. Checks privilege, platform and host tools
2. Derives the service ports from one base port
3. Ensures the WireGuard identities of both nodes
4. Installs the selected relay engine
5. Renders and atomically writes tunnel, relay and service artifacts
6. Registers and starts the services, then marks the node provisioned
"""

from .artifacts import AppliedArtifacts, ArtifactReconciler, ArtifactSet, PolicyState
from .bundle import ClientBundle, load_bundle, write_bundle
from .engine import ENGINE_PROVIDERS, EngineProvider, GoEngine, RustEngine, get_engine
from .flow import Provisioner, ProvisionResult
from .keys import Identities, Identity, KeyStore
from .policy import PolicyToggle, ToggleResult
from .ports import PortAssignment, allocate_ports, ports_for
from .prerequisites import PreconditionValidator, check_dependencies, detect_public_network
from .services import ServiceManager, ServiceStatus
from .sshd import SshPortMigration
from .state import (
    InstallationReport,
    InstallationState,
    InstallationStateDetector,
    read_marker,
    write_marker,
)

__all__ = [
    # Preconditions
    "PreconditionValidator",
    "check_dependencies",
    "detect_public_network",
    # Ports
    "PortAssignment",
    "allocate_ports",
    "ports_for",
    # Credentials
    "Identity",
    "Identities",
    "KeyStore",
    # Engines
    "EngineProvider",
    "GoEngine",
    "RustEngine",
    "ENGINE_PROVIDERS",
    "get_engine",
    # Artifacts
    "AppliedArtifacts",
    "ArtifactReconciler",
    "ArtifactSet",
    "PolicyState",
    # Policy
    "PolicyToggle",
    "ToggleResult",
    # Services
    "ServiceManager",
    "ServiceStatus",
    "SshPortMigration",
    # State
    "InstallationReport",
    "InstallationState",
    "InstallationStateDetector",
    "read_marker",
    "write_marker",
    # Bundle
    "ClientBundle",
    "load_bundle",
    "write_bundle",
    # Flow
    "Provisioner",
    "ProvisionResult",
]
