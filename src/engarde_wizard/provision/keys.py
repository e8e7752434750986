"""WireGuard key material.

The key store is the only component that writes key files. An existing
identity is always returned as-is: regenerating it would silently break the
peer's trust, so new keys are only created when none exist.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field

from ..errors import InvalidInputError, MissingConfigError
from ..shared.files import atomic_write_text, remove_files
from ..shared.logging import get_logger
from ..shared.paths import Layout, NodeRole
from ..shared.process import run_checked

logger = get_logger(__name__)

KEY_FILE_MODE = 0o600
WG_KEY_BYTES = 32


@dataclass(frozen=True)
class Identity:
    """A node's keypair. Peer identities carry only the public key."""

    role: NodeRole
    public_key: str
    private_key: str | None = field(default=None, repr=False)

    def public_only(self) -> Identity:
        return Identity(self.role, self.public_key)


@dataclass(frozen=True)
class Identities:
    """The local identity plus the peer's public identity."""

    local: Identity
    peer: Identity

    def __post_init__(self):
        if self.local.private_key is None:
            raise InvalidInputError("Local identity requires a private key")


def validate_key(value: str, what: str) -> str:
    """Check that ``value`` is a base64 encoded 32-byte WireGuard key."""
    value = str(value or "").strip()
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInputError(f"Invalid {what}: not base64") from e
    if len(raw) != WG_KEY_BYTES:
        raise InvalidInputError(f"Invalid {what}: expected {WG_KEY_BYTES} bytes")
    return value


def peer_identity(role: NodeRole, public_key: str) -> Identity:
    """Wrap a peer's public key received out of band."""
    return Identity(role, validate_key(public_key, f"{role.value} public key"))


class KeyStore:
    """Generate, load and remove keypairs under the WireGuard directory."""

    def __init__(self, layout: Layout):
        self.layout = layout

    def exists(self, role: NodeRole) -> bool:
        return self.layout.private_key(role).exists()

    def ensure_identity(self, role: NodeRole) -> Identity:
        """Return the identity for ``role``, generating it only if absent.

        Args:
            role: Whose keypair to ensure.

        Returns:
            Identity with both keys.

        Raises:
            ExternalCommandError: If ``wg genkey``/``wg pubkey`` fails.
        """
        if self.exists(role):
            return self.load_identity(role)

        private_key = run_checked(["wg", "genkey"], "genkey", f"{role.value} key").strip()
        private_key = validate_key(private_key, "generated private key")
        identity = Identity(role, self._derive_public(private_key, role), private_key)
        self._persist(identity)
        logger.info("identity_generated", role=role.value)
        return identity

    def load_identity(self, role: NodeRole) -> Identity:
        """Read an existing identity without ever generating one.

        Raises:
            MissingConfigError: If no private key exists for ``role``.
        """
        private_path = self.layout.private_key(role)
        if not private_path.exists():
            raise MissingConfigError(f"No {role.value} key found at {private_path}")

        private_key = validate_key(private_path.read_text(), f"{role.value} private key")
        public_path = self.layout.public_key(role)
        if public_path.exists():
            public_key = validate_key(public_path.read_text(), f"{role.value} public key")
        else:
            public_key = self._derive_public(private_key, role)
            atomic_write_text(public_path, public_key + "\n", mode=KEY_FILE_MODE)
            logger.info("public_key_rederived", role=role.value)
        return Identity(role, public_key, private_key)

    def import_identity(self, role: NodeRole, private_key: str) -> Identity:
        """Persist a private key received through the client bundle.

        Importing the same key again is a no-op; a different key over an
        existing one is refused.

        Raises:
            InvalidInputError: If the key is malformed or conflicts.
        """
        private_key = validate_key(private_key, f"{role.value} private key")
        if self.exists(role):
            existing = self.load_identity(role)
            if existing.private_key != private_key:
                raise InvalidInputError(
                    f"A different {role.value} key already exists at "
                    f"{self.layout.private_key(role)}. Remove the installation first."
                )
            return existing

        identity = Identity(role, self._derive_public(private_key, role), private_key)
        self._persist(identity)
        logger.info("identity_imported", role=role.value)
        return identity

    def store_peer(self, identity: Identity) -> None:
        """Persist the peer's public key received through the bundle."""
        public_key = validate_key(identity.public_key, f"{identity.role.value} public key")
        self.layout.wireguard_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        atomic_write_text(
            self.layout.public_key(identity.role), public_key + "\n", mode=KEY_FILE_MODE
        )

    def load_peer(self, role: NodeRole) -> Identity:
        """Read the peer's public identity.

        Raises:
            MissingConfigError: If the peer's public key is absent.
        """
        public_path = self.layout.public_key(role)
        if not public_path.exists():
            raise MissingConfigError(f"No {role.value} public key found at {public_path}")
        return peer_identity(role, public_path.read_text())

    def remove(self) -> list:
        """Delete all key material. Only called on explicit removal."""
        paths = []
        for role in NodeRole:
            paths += [self.layout.private_key(role), self.layout.public_key(role)]
        removed = remove_files(paths)
        logger.info("identities_removed", count=len(removed))
        return removed

    def _derive_public(self, private_key: str, role: NodeRole) -> str:
        public_key = run_checked(
            ["wg", "pubkey"], "pubkey", f"{role.value} key", input=private_key + "\n"
        ).strip()
        return validate_key(public_key, "derived public key")

    def _persist(self, identity: Identity) -> None:
        self.layout.wireguard_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        atomic_write_text(
            self.layout.private_key(identity.role),
            identity.private_key + "\n",
            mode=KEY_FILE_MODE,
        )
        atomic_write_text(
            self.layout.public_key(identity.role),
            identity.public_key + "\n",
            mode=KEY_FILE_MODE,
        )
