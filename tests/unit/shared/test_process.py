"""Unit tests for host command execution."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from engarde_wizard.errors import ExternalCommandError, MissingDependencyError
from engarde_wizard.shared.process import run, run_checked


class TestRun:
    """Tests for run()."""

    def test_captures_text_output(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="ok\n")
            result = run(["wg", "genkey"])

            assert result.stdout == "ok\n"
            args, kwargs = mock_run.call_args
            assert args[0] == ["wg", "genkey"]
            assert kwargs["capture_output"] is True
            assert kwargs["text"] is True

    def test_missing_executable(self):
        """Test a missing tool is a dependency error."""
        with patch("subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(MissingDependencyError, match="wg"):
                run(["wg", "genkey"])

    def test_timeout(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("systemctl", 60)):
            with pytest.raises(ExternalCommandError, match="timed out"):
                run(["systemctl", "restart", "engarde"])


class TestRunChecked:
    """Tests for run_checked()."""

    def test_returns_stdout(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="key\n", stderr="")
            assert run_checked(["wg", "genkey"], "genkey", "server key") == "key\n"

    def test_non_zero_exit(self):
        """Test failures carry the operation, target and stderr."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=5, stdout="", stderr="Unit not found.")
            with pytest.raises(ExternalCommandError) as exc_info:
                run_checked(["systemctl", "start", "engarde"], "start", "engarde")

        error = exc_info.value
        assert error.operation == "start"
        assert error.target == "engarde"
        assert error.returncode == 5
        assert "Unit not found." in str(error)
