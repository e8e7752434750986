"""Precondition checks run before provisioning touches any state.

This module provides detection of administrative privilege, platform
version, required host tools and the public network interface.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import (
    InsufficientPrivilegeError,
    MissingDependencyError,
    UnsupportedPlatformError,
)
from ..shared.logging import get_logger
from ..shared.paths import NodeRole

logger = get_logger(__name__)

MIN_PLATFORM_VERSION = 10

REQUIRED_TOOLS = {
    NodeRole.SERVER: ["wg", "wg-quick", "systemctl", "ip", "iptables", "sysctl"],
    NodeRole.CLIENT: ["wg", "wg-quick", "systemctl", "ip"],
}

INSTALL_HINT = "apt-get install -y wireguard iproute2 iptables"


@dataclass
class PlatformInfo:
    """Distribution identity read from os-release."""

    distro: str
    version: int | None


class PreconditionValidator:
    """Check privilege and platform eligibility. Pure, no side effects."""

    def __init__(
        self,
        os_release: Path = Path("/etc/os-release"),
        min_version: int = MIN_PLATFORM_VERSION,
    ):
        self.os_release = os_release
        self.min_version = min_version

    def validate(self, euid: int | None = None) -> PlatformInfo:
        """Run every precondition.

        Args:
            euid: Effective uid to check (default: the current process).

        Returns:
            The detected platform.

        Raises:
            InsufficientPrivilegeError: If not running as root.
            UnsupportedPlatformError: If the platform is unknown or too old.
        """
        self.check_privilege(os.geteuid() if euid is None else euid)
        return self.check_platform()

    def check_privilege(self, euid: int) -> None:
        if euid != 0:
            raise InsufficientPrivilegeError("You must run engarde-wizard as root.")

    def check_platform(self) -> PlatformInfo:
        info = self.read_platform()
        if info.version is None:
            raise UnsupportedPlatformError(
                f"Cannot determine the platform version from {self.os_release}."
            )
        if info.version < self.min_version:
            raise UnsupportedPlatformError(
                f"{info.distro} {info.version} is not supported; "
                f"version {self.min_version} or higher is required."
            )
        logger.debug("platform_supported", distro=info.distro, version=info.version)
        return info

    def read_platform(self) -> PlatformInfo:
        """Parse ID and the major VERSION_ID from os-release."""
        try:
            text = self.os_release.read_text()
        except OSError:
            return PlatformInfo(distro="unknown", version=None)

        values: dict[str, str] = {}
        for line in text.splitlines():
            if "=" in line:
                key, _, value = line.partition("=")
                values[key.strip()] = value.strip().strip('"')

        match = re.match(r"\d+", values.get("VERSION_ID", ""))
        return PlatformInfo(
            distro=values.get("ID", "unknown"),
            version=int(match.group()) if match else None,
        )


def check_dependencies(role: NodeRole) -> None:
    """Verify the host tools provisioning shells out to.

    Raises:
        MissingDependencyError: Listing every missing tool.
    """
    missing = [tool for tool in REQUIRED_TOOLS[role] if shutil.which(tool) is None]
    if missing:
        raise MissingDependencyError(
            f"Missing required tools: {', '.join(missing)}. Install them with: {INSTALL_HINT}"
        )


@dataclass
class NetworkInfo:
    """Public interface suggestion used as prompt defaults."""

    interface: str | None = None
    address: str | None = None


def detect_public_network() -> NetworkInfo:
    """Read the default-route interface and its first global IPv4 address.

    Detection failures are not errors; the operator is prompted instead.
    """
    info = NetworkInfo()
    try:
        route = subprocess.run(
            ["ip", "-4", "route", "show", "default"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        match = re.search(r"\bdev\s+(\S+)", route.stdout or "")
        if route.returncode == 0 and match:
            info.interface = match.group(1)

        addr = subprocess.run(
            ["ip", "-4", "addr", "show", "scope", "global"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        match = re.search(r"\binet\s+(\d+\.\d+\.\d+\.\d+)/", addr.stdout or "")
        if addr.returncode == 0 and match:
            info.address = match.group(1)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.info("public_network_detection_failed")
    return info
