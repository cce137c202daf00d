"""
Testing utilities for ssh-bringup.

Provides MockSSHServer, an in-process SSH target that can refuse handshakes
or start late, for integration tests without a real virtual machine.
"""
from ssh_bringup.testing.mock_server import MockServerConfig, MockServerStats, MockSSHServer

__all__ = ["MockSSHServer", "MockServerConfig", "MockServerStats"]
