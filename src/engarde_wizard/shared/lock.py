"""Run-level lock preventing two operators from provisioning at once."""

from __future__ import annotations

import os
from pathlib import Path

from ..errors import ConcurrentRunError
from .logging import get_logger

logger = get_logger(__name__)


def holder(pid_file: Path) -> int | None:
    """Return the PID holding the lock, or None if the lock is free.

    Stale or unreadable PID files are removed.
    """
    if not pid_file.exists():
        return None

    try:
        pid = int(pid_file.read_text().strip())
    except (ValueError, OSError):
        pid_file.unlink(missing_ok=True)
        return None

    try:
        os.kill(pid, 0)  # Signal 0 = check existence
        return pid
    except ProcessLookupError:
        logger.info("stale_lock_reclaimed", pid=pid)
        pid_file.unlink(missing_ok=True)
        return None
    except PermissionError:
        # Process exists but belongs to another user
        return pid


class RunLock:
    """PID-file lock held for the duration of one wizard run."""

    def __init__(self, pid_file: Path):
        self.pid_file = pid_file
        self._held = False

    def acquire(self) -> None:
        pid = holder(self.pid_file)
        if pid is not None and pid != os.getpid():
            raise ConcurrentRunError(
                f"Another engarde-wizard run is in progress (PID {pid}). "
                f"Remove {self.pid_file} if that process is gone."
            )
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.pid_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            if pid == os.getpid():
                self._held = True
                return
            raise ConcurrentRunError(
                f"Another engarde-wizard run acquired {self.pid_file} first."
            ) from None
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self._held = True

    def release(self) -> None:
        if self._held:
            self.pid_file.unlink(missing_ok=True)
            self._held = False

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
