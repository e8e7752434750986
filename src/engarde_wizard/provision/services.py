"""Service lifecycle management.

This module maps install/enable/start/stop/disable/restart/status/remove
onto systemd. Every failing call raises ExternalCommandError carrying the
operation and the unit; nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..shared.files import atomic_write_text
from ..shared.logging import get_logger
from ..shared.process import run, run_checked

logger = get_logger(__name__)

SYSTEMD_DIR = Path("/etc/systemd/system")


@dataclass
class ServiceStatus:
    """Registration and runtime state of one unit."""

    name: str
    enabled: bool
    active: bool
    detail: str = ""


class ServiceManager:
    """Manage systemd units."""

    def __init__(self, unit_dir: Path | None = None):
        """Initialize service manager.

        Args:
            unit_dir: Directory for unit files we own.
                      Defaults to /etc/systemd/system
        """
        self.unit_dir = unit_dir or SYSTEMD_DIR

    def unit_file(self, name: str) -> Path:
        return self.unit_dir / f"{name}.service"

    def install(self, name: str, content: str | None = None) -> None:
        """Register a unit, writing its file first when ``content`` is given."""
        if content is not None:
            atomic_write_text(self.unit_file(name), content, mode=0o644)
        self.daemon_reload()
        logger.info("service_installed", service=name)

    def enable(self, name: str) -> None:
        self._systemctl("enable", name)

    def start(self, name: str) -> None:
        self._systemctl("start", name)

    def stop(self, name: str) -> None:
        self._systemctl("stop", name)

    def disable(self, name: str) -> None:
        self._systemctl("disable", name)

    def restart(self, name: str) -> None:
        self._systemctl("restart", name)

    def is_enabled(self, name: str) -> bool:
        """Whether ``name`` is registered as enabled."""
        result = run(["systemctl", "is-enabled", "--quiet", name])
        return result.returncode == 0

    def is_active(self, name: str) -> bool:
        result = run(["systemctl", "is-active", "--quiet", name])
        return result.returncode == 0

    def status(self, name: str) -> ServiceStatus:
        """Get current unit status.

        Inactive or disabled units are reported, not raised.

        Returns:
            ServiceStatus with registration, activity and the status text.
        """
        result = run(["systemctl", "status", "--no-pager", "--lines=5", name])
        return ServiceStatus(
            name=name,
            enabled=self.is_enabled(name),
            active=self.is_active(name),
            detail=(result.stdout or result.stderr or "").strip(),
        )

    def is_known(self, name: str) -> bool:
        """Whether systemd knows the unit at all."""
        result = run(["systemctl", "cat", name])
        return result.returncode == 0

    def remove(self, name: str, owned: bool = False) -> None:
        """Stop and disable a unit, deleting its file if we own it.

        Args:
            name: Unit name.
            owned: True when the unit file was written by provisioning.
        """
        if self.is_known(name):
            if self.is_active(name):
                self.stop(name)
            if self.is_enabled(name):
                self.disable(name)
        if owned:
            self.unit_file(name).unlink(missing_ok=True)
            self.daemon_reload()
        logger.info("service_removed", service=name)

    def ensure_running(self, name: str, restart: bool = False) -> None:
        """Enable and start a unit, restarting it when its config changed."""
        if not self.is_enabled(name):
            self.enable(name)
        if not self.is_active(name):
            self.start(name)
        elif restart:
            self.restart(name)

    def daemon_reload(self) -> None:
        run_checked(["systemctl", "daemon-reload"], "daemon-reload", "systemd")

    def apply_sysctl(self, path: Path) -> None:
        """Load a sysctl drop-in."""
        run_checked(["sysctl", "-p", str(path)], "sysctl", str(path))

    def _systemctl(self, operation: str, name: str) -> None:
        run_checked(["systemctl", operation, name], operation, name)
        logger.info("service_" + operation, service=name)
