"""
Mock SSH server standing in for a booting virtual machine.

Provides:
- MockServerConfig: Configuration for mock server behaviours
- MockSSHServer: Async context manager that runs an in-process asyncssh server

The mock server supports:
- Port 0 binding with dynamic port allocation, or a fixed port so a test can
  make a target "come up" while a step is already dialling it
- Public key authentication against one authorized key
- Refusing the first N handshakes, to imitate sshd starting before
  cloud-init has installed the authorized key
- Canned command output and SFTP for session tests

Example:
    key = asyncssh.generate_private_key("ssh-ed25519")
    config = MockServerConfig(authorized_key=key, handshake_failures_before_success=2)
    async with MockSSHServer(config) as server:
        state = StepState(settings=SSHSettings(username="test", port=server.port), ...)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import asyncssh

log = logging.getLogger(__name__)


@dataclass
class MockServerConfig:
    """
    Configuration for mock SSH server behaviours.

    Attributes:
        username: Username to accept
        authorized_key: Key whose public half is accepted (None accepts nothing)
        handshake_failures_before_success: Reject this many connections' auth first
        delay_auth: Delay in seconds before answering an auth request
        command_outputs: Map commands to (stdout, stderr)
        command_exit_codes: Map commands to exit codes
        enable_sftp: Serve SFTP from the local filesystem
    """
    username: str = "test"
    authorized_key: asyncssh.SSHKey | None = None
    handshake_failures_before_success: int = 0
    delay_auth: float = 0.0
    command_outputs: dict[str, tuple[str, str]] = field(default_factory=dict)
    command_exit_codes: dict[str, int] = field(default_factory=dict)
    enable_sftp: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        assert self.delay_auth >= 0, f"delay_auth must be >= 0, got {self.delay_auth}"
        assert self.handshake_failures_before_success >= 0, (
            f"handshake_failures_before_success must be >= 0, "
            f"got {self.handshake_failures_before_success}"
        )


@dataclass
class MockServerStats:
    """Counters shared by every connection a server accepts."""
    connections: int = 0
    auth_attempts: int = 0
    auth_successes: int = 0
    auth_failures: int = 0


class MockSSHServerProtocol(asyncssh.SSHServer):
    """
    Per-connection server handler.

    Whether a connection's authentication is refused is decided once, in
    begin_auth, from the number of connections seen so far, so one
    connection is one handshake attempt regardless of how many key queries
    the client sends.
    """

    def __init__(
        self,
        config: MockServerConfig,
        stats: MockServerStats,
        live: set[asyncssh.SSHServerConnection],
    ) -> None:
        self._config = config
        self._stats = stats
        self._live = live
        self._conn: asyncssh.SSHServerConnection | None = None
        self._refuse = False

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        self._stats.connections += 1
        self._conn = conn
        self._live.add(conn)
        log.debug("Mock server connection from %s", conn.get_extra_info("peername"))

    def connection_lost(self, exc: Exception | None) -> None:
        if self._conn is not None:
            self._live.discard(self._conn)

    def begin_auth(self, username: str) -> bool:
        self._stats.auth_attempts += 1
        self._refuse = (
            self._stats.auth_attempts <= self._config.handshake_failures_before_success
        )
        if self._refuse:
            self._stats.auth_failures += 1
        return True

    def password_auth_supported(self) -> bool:
        return False

    def public_key_auth_supported(self) -> bool:
        return True

    async def validate_public_key(self, username: str, key: asyncssh.SSHKey) -> bool:
        if self._config.delay_auth > 0:
            await asyncio.sleep(self._config.delay_auth)

        if self._refuse or self._config.authorized_key is None:
            return False

        return (
            username == self._config.username
            and key.public_data == self._config.authorized_key.public_data
        )

    def auth_completed(self) -> None:
        self._stats.auth_successes += 1


async def handle_mock_process(
    process: asyncssh.SSHServerProcess,
    config: MockServerConfig,
) -> None:
    """
    Answer an exec request from the configured command table.

    Unknown commands get echo-like behaviour for ``echo`` and empty output
    otherwise.
    """
    command = process.command or ""

    if command in config.command_outputs:
        stdout, stderr = config.command_outputs[command]
    elif command.startswith("echo "):
        stdout, stderr = command[5:] + "\n", ""
    elif command == "whoami":
        stdout, stderr = config.username + "\n", ""
    else:
        stdout, stderr = "", ""

    if stdout:
        process.stdout.write(stdout)
    if stderr:
        process.stderr.write(stderr)

    process.exit(config.command_exit_codes.get(command, 0))


class MockSSHServer:
    """
    Async context manager for running a mock SSH server.

    Usage:
        async with MockSSHServer(config) as server:
            ...  # connect to localhost:server.port
            assert server.stats.auth_failures == 2
    """

    def __init__(
        self,
        config: MockServerConfig | None = None,
        port: int = 0,
        host: str = "127.0.0.1",
    ) -> None:
        self._config = config or MockServerConfig()
        self._host = host
        self._requested_port = port
        self._port = 0
        self._stats = MockServerStats()
        self._live: set[asyncssh.SSHServerConnection] = set()
        self._server: asyncssh.SSHAcceptor | None = None

    @property
    def port(self) -> int:
        """Return the bound port (only valid after entering context)."""
        assert self._port > 0, "Port not assigned - server not started"
        return self._port

    @property
    def stats(self) -> MockServerStats:
        return self._stats

    @property
    def config(self) -> MockServerConfig:
        return self._config

    async def __aenter__(self) -> "MockSSHServer":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Start listening."""
        assert self._server is None, "Server already started"
        host_key = asyncssh.generate_private_key("ssh-ed25519")

        server_options: dict[str, Any] = {
            "server_host_keys": [host_key],
            "process_factory": self._process_factory,
        }
        if self._config.enable_sftp:
            server_options["sftp_factory"] = True

        self._server = await asyncssh.create_server(
            lambda: MockSSHServerProtocol(self._config, self._stats, self._live),
            self._host,
            self._requested_port,
            **server_options,
        )
        self._port = self._server.sockets[0].getsockname()[1]
        log.debug("Mock SSH server listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        """Stop listening and drop open connections."""
        if self._server:
            self._server.close()
            for conn in list(self._live):
                conn.close()
            await self._server.wait_closed()
            self._server = None

    async def _process_factory(self, process: asyncssh.SSHServerProcess) -> None:
        await handle_mock_process(process, self._config)
