"""Shared modules for engarde-wizard.

This module provides functionality used by every provisioning component:
- Filesystem layout
- Atomic writes
- Host command execution
- Run lock
- Logging
"""

from .files import atomic_write_text, remove_files
from .lock import RunLock
from .logging import configure_logging, get_logger
from .paths import TUNNEL_UNIT, Layout, NodeRole
from .process import run, run_checked

__all__ = [
    # Paths
    "Layout",
    "NodeRole",
    "TUNNEL_UNIT",
    # Files
    "atomic_write_text",
    "remove_files",
    # Processes
    "run",
    "run_checked",
    # Lock
    "RunLock",
    # Logging
    "configure_logging",
    "get_logger",
]
