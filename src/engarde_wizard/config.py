"""Provisioning configuration.

Handles the typed configuration passed to every provisioning component.
Values come from defaults, an optional YAML file
(/etc/engarde-wizard/config.yaml) and ENGARDE_WIZARD_* environment variables,
then interactive prompts fill whatever is still missing.
"""

from __future__ import annotations

import ipaddress
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import InvalidInputError, MissingConfigError
from .shared.paths import NodeRole

# Default values
DEFAULT_CONFIG_PATH = Path("/etc/engarde-wizard/config.yaml")
DEFAULT_BASE_PORT = 65500
DEFAULT_RESERVED_PORT = 65522
DEFAULT_PORT_RANGE = (65500, 65535)
DEFAULT_SERVER_ADDRESS = "10.0.0.1"
DEFAULT_CLIENT_ADDRESS = "10.0.0.2"
DEFAULT_MTU = 1320
DEFAULT_DNS = "1.1.1.1"
DEFAULT_KEEPALIVE = 25

ENGINES = ("go", "rust")
ROUTE_SCOPES = ("split", "full")
MTU_RANGE = (1280, 1500)

ENV_PREFIX = "ENGARDE_WIZARD_"


@dataclass
class ProvisionConfig:
    """Validated inputs of one provisioning run."""

    role: NodeRole = NodeRole.SERVER
    engine: str = "go"
    base_port: int = DEFAULT_BASE_PORT
    reserved_port: int = DEFAULT_RESERVED_PORT
    port_range_low: int = DEFAULT_PORT_RANGE[0]
    port_range_high: int = DEFAULT_PORT_RANGE[1]
    server_address: str = DEFAULT_SERVER_ADDRESS
    client_address: str = DEFAULT_CLIENT_ADDRESS
    # Server: this host's public IPv4. Client: the server endpoint.
    public_address: str | None = None
    # Server only: interface carrying the default route
    public_interface: str | None = None
    mtu: int = DEFAULT_MTU
    dns: str = DEFAULT_DNS
    keepalive: int = DEFAULT_KEEPALIVE
    route_scope: str = "split"
    relay_description: str = ""
    web_username: str = "engarde"
    web_password: str = "engarde"
    client_timeout: int = 30
    write_timeout: int = 10

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict, repr=False, compare=False)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    @property
    def port_range(self) -> tuple[int, int]:
        return (self.port_range_low, self.port_range_high)

    @property
    def description(self) -> str:
        if self.relay_description:
            return self.relay_description
        if self.role is NodeRole.SERVER:
            return "Engarde Server Instance"
        return "Engarde Client Instance"

    def validate(self) -> ProvisionConfig:
        """Check every field, raising InvalidInputError on the first problem.

        Returns:
            self, so calls can be chained.
        """
        if self.engine not in ENGINES:
            raise InvalidInputError(f"Unknown engine {self.engine!r}; choose one of {ENGINES}")
        if self.route_scope not in ROUTE_SCOPES:
            raise InvalidInputError(
                f"Unknown route scope {self.route_scope!r}; choose one of {ROUTE_SCOPES}"
            )

        server = parse_ipv4(self.server_address, "server tunnel address")
        client = parse_ipv4(self.client_address, "client tunnel address")
        if server == client:
            raise InvalidInputError("Server and client tunnel addresses must differ")
        if ipaddress.ip_network(f"{server}/24", strict=False) != ipaddress.ip_network(
            f"{client}/24", strict=False
        ):
            raise InvalidInputError(
                f"Client tunnel address {client} is outside the server subnet {server}/24"
            )

        if self.public_address is not None:
            parse_ipv4(self.public_address, "public address")
        if self.public_interface is not None and not self.public_interface.strip():
            raise InvalidInputError("Public interface must not be empty")

        low, high = self.port_range
        if not 1 <= low <= high <= 65535:
            raise InvalidInputError(f"Invalid port range {low}-{high}")
        if not MTU_RANGE[0] <= self.mtu <= MTU_RANGE[1]:
            raise InvalidInputError(
                f"MTU {self.mtu} outside {MTU_RANGE[0]}-{MTU_RANGE[1]}"
            )
        parse_ipv4(self.dns, "DNS server")
        if not self.web_username or not self.web_password:
            raise InvalidInputError("Web manager username and password are required")
        if self.client_timeout <= 0 or self.write_timeout <= 0 or self.keepalive <= 0:
            raise InvalidInputError("Timeouts and keepalive must be positive")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form, as stored in the provisioning marker."""
        data = asdict(self)
        data.pop("_sources", None)
        data["role"] = self.role.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionConfig:
        """Build a config from plain data, coercing scalar types."""
        known = {f.name: f for f in fields(cls) if not f.name.startswith("_")}
        unknown = set(data) - set(known)
        if unknown:
            raise InvalidInputError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        values: dict[str, Any] = {}
        for key, raw in data.items():
            values[key] = _coerce(key, raw, known[key].default)
        return cls(**values)

    def with_overrides(self, **changes: Any) -> ProvisionConfig:
        """Copy with ``changes`` applied and recorded as prompt values."""
        updated = replace(self, **changes)
        updated._sources = {**self._sources, **{k: "prompt" for k in changes}}
        return updated


def parse_ipv4(value: str, what: str) -> ipaddress.IPv4Address:
    """Parse a bare IPv4 address.

    Raises:
        InvalidInputError: If ``value`` is not a dotted-quad IPv4 address.
    """
    try:
        return ipaddress.IPv4Address(str(value).strip())
    except ValueError as e:
        raise InvalidInputError(f"Invalid {what}: {value!r}") from e


def _coerce(key: str, raw: Any, default: Any) -> Any:
    if key == "role":
        try:
            return NodeRole(str(raw).lower())
        except ValueError as e:
            raise InvalidInputError(f"Invalid role {raw!r}") from e
    if raw is None:
        return None
    if isinstance(default, bool):
        return str(raw).lower() in ("1", "true", "yes")
    if isinstance(default, int):
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"{key} must be an integer, got {raw!r}") from e
    return str(raw)


def get_config_path() -> Path:
    """Get the config file path, honouring ENGARDE_WIZARD_CONFIG."""
    override = os.environ.get(f"{ENV_PREFIX}CONFIG")
    return Path(override) if override else DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None, role: NodeRole | None = None) -> ProvisionConfig:
    """Load provisioning configuration.

    Precedence (highest to lowest):
    1. Environment variables (ENGARDE_WIZARD_<FIELD>)
    2. Config file
    3. Defaults

    Args:
        path: Explicit config file. Missing explicit files are an error;
            the default location is optional.
        role: Role forced by the command line, overriding both sources.

    Returns:
        ProvisionConfig with values and sources (not yet validated).
    """
    explicit = path is not None
    config_path = path or get_config_path()
    data: dict[str, Any] = {}
    sources: dict[str, str] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InvalidInputError(f"Cannot parse {config_path}: {e}") from e
        if not isinstance(file_config, dict):
            raise InvalidInputError(f"{config_path} must contain a mapping")
        data.update(file_config)
        sources.update({key: "config file" for key in file_config})
    elif explicit:
        raise MissingConfigError(f"Config file not found: {config_path}")

    for f in fields(ProvisionConfig):
        if f.name.startswith("_"):
            continue
        value = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if value:
            data[f.name] = value
            sources[f.name] = "environment"

    if role is not None:
        data["role"] = role.value
        sources["role"] = "command line"

    config = ProvisionConfig.from_dict(data)
    config._sources = sources
    return config
