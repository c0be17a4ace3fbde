"""
Testing utilities for hostkey_smoke.

Provides MockSSHServer, an in-process SSH server to scan and connect to.
"""
from hostkey_smoke.testing.mock_server import MockServerConfig, MockSSHServer

__all__ = ["MockSSHServer", "MockServerConfig"]
