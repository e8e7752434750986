"""Management-access port for sshd.

The server moves sshd to the reserved management port so the forwarding
policy can claim every other inbound port. sshd_config belongs to the
host, so only its Port directive is rewritten.
"""

from __future__ import annotations

import re
from pathlib import Path

from ..errors import ExternalCommandError, MissingConfigError
from ..shared.files import atomic_write_text
from ..shared.logging import get_logger
from .services import ServiceManager

logger = get_logger(__name__)

DEFAULT_SSH_PORT = 22
SSH_UNITS = ("ssh", "sshd")

_PORT_LINE = re.compile(r"^[ \t]*#?[ \t]*Port[ \t]+\d+[ \t]*$", re.MULTILINE)
_ACTIVE_PORT = re.compile(r"^[ \t]*Port[ \t]+(\d+)[ \t]*$", re.MULTILINE)


def current_ssh_port(text: str) -> int:
    """First active Port directive, or 22 when none is set."""
    match = _ACTIVE_PORT.search(text)
    return int(match.group(1)) if match else DEFAULT_SSH_PORT


def with_ssh_port(text: str, port: int) -> str:
    """``text`` with every Port line, commented or not, set to ``port``.

    A Port line is appended when the file has none.
    """
    if _PORT_LINE.search(text):
        return _PORT_LINE.sub(f"Port {port}", text)
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{text}Port {port}\n"


class SshPortMigration:
    """Move sshd to the management-access port."""

    def __init__(self, sshd_config: Path, services: ServiceManager):
        self.sshd_config = sshd_config
        self.services = services

    def read(self) -> str:
        if not self.sshd_config.exists():
            raise MissingConfigError(f"sshd config not found: {self.sshd_config}")
        return self.sshd_config.read_text()

    def needed(self, port: int) -> bool:
        return current_ssh_port(self.read()) != port

    def apply(self, port: int) -> bool:
        """Rewrite sshd_config and restart sshd.

        Returns:
            True if the port changed, False if sshd already used it.

        Raises:
            ExternalCommandError: If neither ssh nor sshd could be restarted.
        """
        text = self.read()
        if current_ssh_port(text) == port:
            return False

        mode = self.sshd_config.stat().st_mode & 0o777
        atomic_write_text(self.sshd_config, with_ssh_port(text, port), mode=mode)
        logger.info("ssh_port_changed", port=port)

        last_error: ExternalCommandError | None = None
        for unit in SSH_UNITS:
            try:
                self.services.restart(unit)
                return True
            except ExternalCommandError as e:
                last_error = e
        raise last_error
