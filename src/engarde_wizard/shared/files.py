"""Atomic file replacement."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, content: str, mode: int = 0o644) -> bool:
    """Replace ``path`` with ``content`` in one step.

    The new content is written to a temporary file in the same directory,
    flushed to disk and renamed over the target, so readers see either the
    old document or the new one, never a truncated file.

    Args:
        path: Destination file.
        content: Full document text.
        mode: Permission bits applied before the rename.

    Returns:
        True if the file changed, False if it already held ``content``.
    """
    if path.exists() and path.read_text(encoding="utf-8") == content:
        if (path.stat().st_mode & 0o777) != mode:
            path.chmod(mode)
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True


def remove_files(paths: list[Path]) -> list[Path]:
    """Delete the given files, returning the ones that existed."""
    removed = []
    for path in paths:
        if path.exists():
            path.unlink()
            removed.append(path)
    return removed
