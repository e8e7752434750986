"""Relay engine providers.

The relay daemon is an externally built binary. A provider knows where to
fetch the build for each role and installs it; nothing else about the
binary's internals is assumed.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import httpx

from ..errors import ExternalCommandError, InvalidInputError
from ..shared.logging import get_logger
from ..shared.paths import NodeRole

logger = get_logger(__name__)

DOWNLOAD_TIMEOUT = 60.0


class EngineProvider:
    """Base class for a downloadable relay build."""

    name: str = ""
    label: str = ""
    urls: dict[NodeRole, str] = {}

    def __init__(self, timeout_seconds: float = DOWNLOAD_TIMEOUT):
        self.timeout_seconds = timeout_seconds

    def binary_url(self, role: NodeRole) -> str:
        return self.urls[role]

    def ensure_installed(self, role: NodeRole, target: Path) -> bool:
        """Download the binary for ``role`` unless ``target`` already exists.

        Args:
            role: Which relay binary to fetch.
            target: Install location.

        Returns:
            True if a download happened, False if the binary was present.

        Raises:
            ExternalCommandError: On any network or HTTP failure.
        """
        if target.exists():
            logger.debug("engine_present", path=str(target))
            return False

        url = self.binary_url(role)
        logger.info("engine_download", engine=self.name, url=url)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                with httpx.stream(
                    "GET", url, follow_redirects=True, timeout=self.timeout_seconds
                ) as response:
                    if response.status_code != 200:
                        raise ExternalCommandError(
                            "download", url, detail=f"HTTP {response.status_code}"
                        )
                    for chunk in response.iter_bytes():
                        f.write(chunk)
            os.chmod(tmp_name, 0o755)
            os.replace(tmp_name, target)
        except httpx.HTTPError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ExternalCommandError("download", url, detail=str(e)) from e
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return True


class GoEngine(EngineProvider):
    """Reference Go build (stable)."""

    name = "go"
    label = "Go [Stable]"
    urls = {
        NodeRole.SERVER: "https://engarde.linuxzogno.org/builds/master/linux/amd64/engarde-server",
        NodeRole.CLIENT: "https://engarde.linuxzogno.org/builds/master/linux/amd64/engarde-client",
    }


class RustEngine(EngineProvider):
    """Rust build (performance)."""

    name = "rust"
    label = "Rust [Performance]"
    urls = {
        NodeRole.SERVER: "https://github.com/Brazzo978/engarde/releases/download/0.0.1/engarde_server",
        NodeRole.CLIENT: "https://github.com/Brazzo978/engarde/releases/download/0.0.1/engarde_client",
    }


ENGINE_PROVIDERS: dict[str, type[EngineProvider]] = {
    GoEngine.name: GoEngine,
    RustEngine.name: RustEngine,
}


def get_engine(name: str) -> EngineProvider:
    try:
        return ENGINE_PROVIDERS[name]()
    except KeyError:
        raise InvalidInputError(f"Unknown engine {name!r}") from None
