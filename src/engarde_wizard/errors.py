"""Error taxonomy for engarde-wizard.

Every error aborts the current flow. The CLI prints the message and exits
with ``exit_code``; nothing is retried automatically.
"""

from __future__ import annotations


class WizardError(Exception):
    """Base class for all provisioning errors."""

    exit_code: int = 1

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InsufficientPrivilegeError(WizardError, PermissionError):
    """Not running with administrative privilege."""


class UnsupportedPlatformError(WizardError):
    """Platform missing or below the supported version floor."""


class MissingDependencyError(WizardError):
    """A required host tool is not installed."""


class MissingConfigError(WizardError):
    """A required external input (bundle, key, marker) is absent."""


class InvalidInputError(WizardError):
    """Malformed address, port, choice or file content."""


class ConcurrentRunError(WizardError):
    """Another provisioning run holds the lock."""


class ExternalCommandError(WizardError):
    """A service-manager, key-generation or download step failed."""

    def __init__(
        self,
        operation: str,
        target: str,
        returncode: int | None = None,
        detail: str = "",
    ):
        self.operation = operation
        self.target = target
        self.returncode = returncode
        self.detail = detail.strip()

        message = f"{operation} {target} failed"
        if returncode is not None:
            message += f" (exit {returncode})"
        if self.detail:
            message += f": {self.detail}"
        super().__init__(message)
