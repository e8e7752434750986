"""Distributable client bundle.

The server writes everything the client needs into one YAML file: the
client's keypair, the server's public key and the relay connection
parameters. The client wizard refuses to run without it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from ..config import ProvisionConfig, parse_ipv4
from ..errors import InvalidInputError, MissingConfigError
from ..shared.files import atomic_write_text
from ..shared.paths import NodeRole
from .keys import Identity, validate_key
from .ports import PortAssignment

BUNDLE_VERSION = 1
BUNDLE_FILE_MODE = 0o600


@dataclass(frozen=True)
class ClientBundle:
    """Connection parameters handed from the server to the client."""

    server_endpoint: str
    server_public_key: str
    client_public_key: str
    client_private_key: str = field(repr=False)
    client_address: str
    base_port: int
    relay_port: int
    mtu: int
    dns: str
    web_username: str
    web_password: str = field(repr=False)
    version: int = BUNDLE_VERSION

    @classmethod
    def build(
        cls,
        config: ProvisionConfig,
        ports: PortAssignment,
        server: Identity,
        client: Identity,
    ) -> ClientBundle:
        if not config.public_address:
            raise InvalidInputError("The server's public address is required for the bundle")
        if client.private_key is None:
            raise InvalidInputError("The bundle needs the client's private key")
        return cls(
            server_endpoint=config.public_address,
            server_public_key=server.public_key,
            client_public_key=client.public_key,
            client_private_key=client.private_key,
            client_address=config.client_address,
            base_port=ports.tunnel,
            relay_port=ports.relay,
            mtu=config.mtu,
            dns=config.dns,
            web_username=config.web_username,
            web_password=config.web_password,
        )

    def validate(self) -> ClientBundle:
        if self.version != BUNDLE_VERSION:
            raise InvalidInputError(f"Unsupported bundle version {self.version}")
        parse_ipv4(self.server_endpoint, "server endpoint")
        parse_ipv4(self.client_address, "client tunnel address")
        validate_key(self.server_public_key, "server public key")
        validate_key(self.client_public_key, "client public key")
        validate_key(self.client_private_key, "client private key")
        if self.relay_port != self.base_port + 1:
            raise InvalidInputError(
                f"Relay port {self.relay_port} does not follow base port {self.base_port}"
            )
        return self

    def apply_to(self, config: ProvisionConfig) -> ProvisionConfig:
        """Client config with every server-decided value taken from the bundle."""
        changes = {
            "role": NodeRole.CLIENT,
            "public_address": self.server_endpoint,
            "client_address": self.client_address,
            "base_port": self.base_port,
            "mtu": self.mtu,
            "dns": self.dns,
            "web_username": self.web_username,
            "web_password": self.web_password,
        }
        updated = replace(config, **changes)
        updated._sources = {**config._sources, **{key: "bundle" for key in changes}}
        return updated

    def server_identity(self) -> Identity:
        return Identity(NodeRole.SERVER, self.server_public_key)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def write_bundle(path: Path, bundle: ClientBundle) -> bool:
    """Write the bundle with owner-only permissions.

    Returns:
        True if the file changed.
    """
    body = yaml.safe_dump(bundle.to_dict(), default_flow_style=False, sort_keys=False)
    return atomic_write_text(path, body, mode=BUNDLE_FILE_MODE)


def load_bundle(path: Path) -> ClientBundle:
    """Read and validate a bundle.

    Raises:
        MissingConfigError: If the file does not exist.
        InvalidInputError: If it is malformed.
    """
    if not path.exists():
        raise MissingConfigError(
            f"Client bundle not found: {path}. Copy it from the server first."
        )
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise InvalidInputError(f"Cannot parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidInputError(f"{path} must contain a mapping")

    names = {f.name for f in fields(ClientBundle)}
    missing = names - set(data) - {"version"}
    if missing:
        raise InvalidInputError(f"{path} is missing: {', '.join(sorted(missing))}")
    try:
        bundle = ClientBundle(**{k: v for k, v in data.items() if k in names})
    except TypeError as e:
        raise InvalidInputError(f"{path} is malformed: {e}") from e
    for name in ("base_port", "relay_port", "mtu", "version"):
        if not isinstance(getattr(bundle, name), int):
            raise InvalidInputError(f"{path}: {name} must be an integer")
    return bundle.validate()
