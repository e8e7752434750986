"""Blocking execution of host commands."""

from __future__ import annotations

import subprocess

from ..errors import ExternalCommandError, MissingDependencyError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 60


def run(
    args: list[str],
    input: str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a command and return the result without checking its exit code.

    Raises:
        MissingDependencyError: If the executable does not exist.
        ExternalCommandError: If the command times out.
    """
    logger.debug("run_command", args=args)
    try:
        return subprocess.run(
            args,
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise MissingDependencyError(f"{args[0]} not found. Is it installed?") from e
    except subprocess.TimeoutExpired as e:
        raise ExternalCommandError(args[0], " ".join(args[1:]), detail="timed out") from e


def run_checked(
    args: list[str],
    operation: str,
    target: str,
    input: str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> str:
    """Run a command and return its stdout, failing fast on a non-zero exit.

    Args:
        args: Command line.
        operation: Name of the abstract operation, used in the error.
        target: What the operation acted on (service, key, file).
        input: Optional stdin text.
        timeout: Seconds before the command is abandoned.

    Returns:
        Captured stdout.

    Raises:
        ExternalCommandError: If the command exits non-zero.
    """
    result = run(args, input=input, timeout=timeout)
    if result.returncode != 0:
        logger.error(
            "command_failed",
            operation=operation,
            target=target,
            returncode=result.returncode,
        )
        raise ExternalCommandError(
            operation,
            target,
            returncode=result.returncode,
            detail=(result.stderr or result.stdout or ""),
        )
    return result.stdout or ""
