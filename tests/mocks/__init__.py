"""Test mocks for engarde-wizard.

Provides mock implementations for testing:
- FakeHost: Answers wg, systemctl and sysctl calls from memory
- RecordingServices: ServiceManager capturing the tunnel config at stop time
"""

from .fake_host import FakeHost, make_key, public_for
from .recording_services import RecordingServices

__all__ = ["FakeHost", "RecordingServices", "make_key", "public_for"]
