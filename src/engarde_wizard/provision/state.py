"""Installation state detection for idempotent runs.

The state is recomputed on every run from systemd and the filesystem. A
node counts as provisioned only when both services are enabled and the
marker exists; anything partial sends the wizard back through a full,
idempotent provisioning pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import yaml

from ..config import ProvisionConfig
from ..errors import InvalidInputError, MissingConfigError
from ..shared.files import atomic_write_text
from ..shared.paths import TUNNEL_UNIT, Layout
from .services import ServiceManager


class InstallationState(Enum):
    """Derived provisioning state."""

    NOT_PROVISIONED = "not_provisioned"
    PROVISIONED = "provisioned"


@dataclass
class InstallationReport:
    """Signals behind the derived state."""

    tunnel_enabled: bool = False
    relay_enabled: bool = False
    marker_present: bool = False

    @property
    def state(self) -> InstallationState:
        if self.tunnel_enabled and self.relay_enabled and self.marker_present:
            return InstallationState.PROVISIONED
        return InstallationState.NOT_PROVISIONED

    @property
    def partial(self) -> bool:
        """Some, but not all, signals are present."""
        signals = (self.tunnel_enabled, self.relay_enabled, self.marker_present)
        return any(signals) and not all(signals)


class InstallationStateDetector:
    """Probe services and the marker file."""

    def __init__(self, layout: Layout, services: ServiceManager | None = None):
        self.layout = layout
        self.services = services or ServiceManager(layout.relay_unit_file.parent)

    def detect(self) -> InstallationReport:
        """Detect current installation state.

        Returns:
            InstallationReport whose ``state`` is PROVISIONED only when all
            three signals hold.
        """
        return InstallationReport(
            tunnel_enabled=self.services.is_enabled(TUNNEL_UNIT),
            relay_enabled=self.services.is_enabled(self.layout.relay_unit),
            marker_present=self.layout.marker.exists(),
        )


def write_marker(layout: Layout, config: ProvisionConfig) -> None:
    """Record a completed run. Written last, after every other step."""
    body = yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False)
    atomic_write_text(layout.marker, body, mode=0o600)


def read_marker(layout: Layout) -> ProvisionConfig:
    """Load the config a node was provisioned with.

    Raises:
        MissingConfigError: If the marker is absent.
        InvalidInputError: If it cannot be parsed.
    """
    if not layout.marker.exists():
        raise MissingConfigError(f"Provisioning marker not found: {layout.marker}")
    try:
        data = yaml.safe_load(layout.marker.read_text()) or {}
    except yaml.YAMLError as e:
        raise InvalidInputError(f"Cannot parse {layout.marker}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidInputError(f"{layout.marker} must contain a mapping")
    return ProvisionConfig.from_dict(data).validate()
