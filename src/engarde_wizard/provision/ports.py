"""Service port derivation.

All ports come from one base port plus fixed offsets. Rejected inputs are
never shifted to a nearby free value, since published firewall rules and
the peer's bundle depend on the exact numbers.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..config import DEFAULT_PORT_RANGE, DEFAULT_RESERVED_PORT, ProvisionConfig
from ..errors import InvalidInputError

# Offsets from the base port
PORT_OFFSETS = {
    "tunnel": 0,
    "relay": 1,
    "admin-ui": 2,
}


@dataclass(frozen=True)
class PortAssignment:
    """Concrete port for every logical service."""

    tunnel: int
    relay: int
    admin_ui: int
    management_access: int

    def as_dict(self) -> dict[str, int]:
        return {
            "tunnel": self.tunnel,
            "relay": self.relay,
            "admin-ui": self.admin_ui,
            "management-access": self.management_access,
        }


def allocate_ports(
    base: int,
    reserved: frozenset[int] | set[int] = frozenset({DEFAULT_RESERVED_PORT}),
    port_range: tuple[int, int] = DEFAULT_PORT_RANGE,
    management_access: int | None = None,
) -> PortAssignment:
    """Derive the port assignment for ``base``.

    Args:
        base: Base port (the tunnel port).
        reserved: Ports no derived service may take.
        port_range: Inclusive (low, high) bounds for derived ports.
        management_access: Management port to record; defaults to the
            lowest reserved port.

    Returns:
        PortAssignment, identical for identical inputs.

    Raises:
        InvalidInputError: If any derived port is out of range or reserved.
    """
    if isinstance(base, bool) or not isinstance(base, int):
        raise InvalidInputError(f"Base port must be an integer, got {base!r}")

    low, high = port_range
    derived = {name: base + offset for name, offset in PORT_OFFSETS.items()}

    for name, port in derived.items():
        if not low <= port <= high:
            raise InvalidInputError(
                f"{name} port {port} (from base {base}) is outside {low}-{high}"
            )
        if port in reserved:
            raise InvalidInputError(
                f"{name} port {port} (from base {base}) collides with a reserved port"
            )

    if management_access is None:
        management_access = min(reserved) if reserved else DEFAULT_RESERVED_PORT

    assignment = PortAssignment(
        tunnel=derived["tunnel"],
        relay=derived["relay"],
        admin_ui=derived["admin-ui"],
        management_access=management_access,
    )
    values = list(assignment.as_dict().values())
    if len(set(values)) != len(values):
        raise InvalidInputError(f"Port assignment is not distinct: {assignment.as_dict()}")
    return assignment


def parse_port(value: str | int) -> int:
    """Parse operator input into a port number."""
    try:
        port = int(str(value).strip())
    except ValueError as e:
        raise InvalidInputError(f"Port must be a number, got {value!r}") from e
    if not 1 <= port <= 65535:
        raise InvalidInputError(f"Port {port} outside 1-65535")
    return port


def ports_for(config: ProvisionConfig) -> PortAssignment:
    """Port assignment described by a provisioning config."""
    return allocate_ports(
        config.base_port,
        reserved=frozenset({config.reserved_port}),
        port_range=config.port_range,
        management_access=config.reserved_port,
    )
