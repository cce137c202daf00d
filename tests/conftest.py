"""
Pytest fixtures for ssh-bringup tests.

Provides:
- Client key fixtures (generated per session, no files on disk)
- Mock SSH server fixture (in-process asyncssh server, no VM required)
- Scripted dialer/handshaker fakes for deterministic attempt-loop tests
- Event capture and UI recording fixtures
"""
from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock

import asyncssh
import pytest

from ssh_bringup.config import AttemptPolicy
from ssh_bringup.credentials import AuthContext
from ssh_bringup.errors import DialError, HandshakeError
from ssh_bringup.session import SessionHandle
from ssh_bringup.transport import TransportConnection
from ssh_bringup.ui import RecordingUi

if TYPE_CHECKING:
    from ssh_bringup.events import EventCollector
    from ssh_bringup.testing.mock_server import MockSSHServer


def unused_tcp_port() -> int:
    """Return a localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_transport(address: str = "127.0.0.1", port: int = 22) -> TransportConnection:
    """Build a TransportConnection over one end of a local socket pair."""
    left, right = socket.socketpair()
    right.close()
    return TransportConnection(left, address, port)


def make_session(transport: TransportConnection, username: str = "test") -> SessionHandle:
    """Build a SessionHandle over a mocked asyncssh connection."""
    conn = MagicMock(spec=asyncssh.SSHClientConnection)
    conn.wait_closed = AsyncMock()
    return SessionHandle(conn, transport, username)


@dataclass
class ScriptedDialer:
    """
    Dialer fake: refuses the first `failures` dials, then connects.

    With failures=None it refuses forever. Every transport it hands out is
    kept so tests can check what was closed.
    """
    failures: int | None = 0
    delay: float = 0.0
    calls: int = 0
    transports: list[TransportConnection] = field(default_factory=list)
    call_times: list[float] = field(default_factory=list)

    async def __call__(self, address: str, port: int, timeout: float) -> TransportConnection:
        self.calls += 1
        self.call_times.append(asyncio.get_running_loop().time())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures is None or self.calls <= self.failures:
            raise DialError(f"Dial to {address}:{port} failed: connection refused")
        transport = make_transport(address, port)
        self.transports.append(transport)
        return transport


@dataclass
class ScriptedHandshaker:
    """
    Handshaker fake: fails the first `failures` handshakes, then succeeds.

    With failures=None it fails forever.
    """
    failures: int | None = 0
    delay: float = 0.0
    calls: int = 0
    sessions: list[SessionHandle] = field(default_factory=list)

    async def __call__(
        self,
        transport: TransportConnection,
        username: str,
        auth: AuthContext,
        timeout: float,
    ) -> SessionHandle:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures is None or self.calls <= self.failures:
            raise HandshakeError("SSH handshake failed: Permission denied")
        session = make_session(transport, username)
        self.sessions.append(session)
        return session


@pytest.fixture(scope="session")
def client_key() -> asyncssh.SSHKey:
    """An ed25519 client key shared by the whole test session."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture
def client_key_bytes(client_key: asyncssh.SSHKey) -> bytes:
    """The client key in OpenSSH private key format."""
    return client_key.export_private_key()


@pytest.fixture
def auth_context(client_key: asyncssh.SSHKey) -> AuthContext:
    return AuthContext(key=client_key)


@pytest.fixture
def fast_policy() -> AttemptPolicy:
    """Policy with test-friendly timings; the budget keeps its default of 5."""
    return AttemptPolicy(
        dial_timeout_sec=1.0,
        handshake_timeout_sec=2.0,
        backoff_sec=0.05,
        poll_interval_sec=0.05,
    )


@pytest.fixture
async def mock_ssh_server(client_key: asyncssh.SSHKey) -> AsyncGenerator["MockSSHServer", None]:
    """
    Fixture providing a MockSSHServer that accepts client_key for user "test".

    Usage:
        async def test_example(mock_ssh_server):
            settings = SSHSettings(username="test", port=mock_ssh_server.port)
    """
    from ssh_bringup.testing.mock_server import MockServerConfig, MockSSHServer

    config = MockServerConfig(username="test", authorized_key=client_key)

    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture
def event_collector() -> Generator["EventCollector", None, None]:
    """Fixture for capturing and asserting event sequences."""
    from ssh_bringup.events import EventCollector

    collector = EventCollector()
    yield collector
    collector.clear()


@pytest.fixture
def recording_ui() -> RecordingUi:
    return RecordingUi()


@pytest.fixture
def temp_jsonl_path(tmp_path):
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"
