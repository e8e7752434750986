"""Unit tests for the error taxonomy."""

import pytest

from engarde_wizard.errors import (
    ConcurrentRunError,
    ExternalCommandError,
    InsufficientPrivilegeError,
    InvalidInputError,
    MissingConfigError,
    MissingDependencyError,
    UnsupportedPlatformError,
    WizardError,
)

ALL_ERRORS = [
    InsufficientPrivilegeError,
    UnsupportedPlatformError,
    MissingDependencyError,
    MissingConfigError,
    InvalidInputError,
    ConcurrentRunError,
]


class TestWizardError:
    """Tests for the error base class."""

    @pytest.mark.parametrize("error_class", ALL_ERRORS)
    def test_every_error_exits_with_one(self, error_class):
        """Test every kind maps to exit code 1."""
        error = error_class("boom")
        assert isinstance(error, WizardError)
        assert error.exit_code == 1
        assert str(error) == "boom"
        assert error.message == "boom"

    def test_privilege_error_is_permission_error(self):
        """Test privilege failures are also PermissionError."""
        with pytest.raises(PermissionError):
            raise InsufficientPrivilegeError("You must run engarde-wizard as root.")


class TestExternalCommandError:
    """Tests for ExternalCommandError."""

    def test_message_carries_operation_and_target(self):
        """Test operation, target, exit code and detail are reported."""
        error = ExternalCommandError("restart", "engarde", returncode=1, detail="Job failed.\n")
        assert error.operation == "restart"
        assert error.target == "engarde"
        assert error.returncode == 1
        assert str(error) == "restart engarde failed (exit 1): Job failed."
        assert error.exit_code == 1

    def test_message_without_returncode(self):
        """Test download failures without an exit code."""
        error = ExternalCommandError("download", "https://example.invalid/engarde")
        assert str(error) == "download https://example.invalid/engarde failed"
