"""
SSH session handle and the asyncssh handshake capability.

Provides:
- ExecResult: Result of command execution
- SessionHandle: ready-to-use SSH session owning its transport
- asyncssh_handshake: upgrade a dialled transport into a SessionHandle
- Handshaker: the callable type the attempt loop accepts

Host keys are not verified: the target was provisioned moments ago, so
there is nothing to compare its key against.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

import asyncssh

from ssh_bringup.credentials import AuthContext
from ssh_bringup.errors import ErrorContext, HandshakeError
from ssh_bringup.events import EventEmitter, EventType
from ssh_bringup.transport import TransportConnection

log = logging.getLogger(__name__)


@dataclass
class ExecResult:
    """Result of a command execution."""
    stdout: str
    stderr: str
    exit_code: int


class SessionHandle:
    """
    Established SSH session on a provisioned machine.

    Owns both the asyncssh connection and the transport it runs over.
    close() releases both and may be called any number of times.

    Usage:
        result = await session.exec("cloud-init status --wait")
        await session.upload("setup.sh", "/tmp/setup.sh")
        await session.close()
    """

    def __init__(
        self,
        conn: asyncssh.SSHClientConnection,
        transport: TransportConnection,
        username: str,
        emitter: EventEmitter | None = None,
    ) -> None:
        self._conn: asyncssh.SSHClientConnection | None = conn
        self._transport = transport
        self._username = username
        self._emitter = emitter or EventEmitter()

    @property
    def transport(self) -> TransportConnection:
        return self._transport

    @property
    def username(self) -> str:
        return self._username

    @property
    def closed(self) -> bool:
        return self._conn is None

    def attach_emitter(self, emitter: EventEmitter) -> None:
        """Route this session's EXEC/DISCONNECT events to emitter."""
        self._emitter = emitter

    def _require_conn(self) -> asyncssh.SSHClientConnection:
        assert self._conn is not None, "Session is closed"
        return self._conn

    async def exec(self, command: str) -> ExecResult:
        """
        Execute a command on the remote host.

        A non-zero exit status is reported in the result, not raised.
        """
        conn = self._require_conn()

        with self._emitter.timed_event(EventType.EXEC, command=command) as event_data:
            try:
                result = await conn.run(command, check=False)
            except Exception as e:
                event_data["error"] = str(e)
                raise

            exit_code = result.exit_status if result.exit_status is not None else -1
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            if isinstance(stdout, bytes):
                stdout = stdout.decode("utf-8", errors="replace")
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")

            event_data["exit_code"] = exit_code
            event_data["stdout_len"] = len(stdout)
            event_data["stderr_len"] = len(stderr)

        return ExecResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    async def upload(self, local_path: Path | str, remote_path: str) -> None:
        """Copy a local file to remote_path over SFTP."""
        conn = self._require_conn()
        log.debug("Uploading %s to %s", local_path, remote_path)
        async with conn.start_sftp_client() as sftp:
            await sftp.put(str(local_path), remote_path)

    async def download(self, remote_path: str, local_path: Path | str) -> None:
        """Copy remote_path to a local file over SFTP."""
        conn = self._require_conn()
        log.debug("Downloading %s to %s", remote_path, local_path)
        async with conn.start_sftp_client() as sftp:
            await sftp.get(remote_path, str(local_path))

    async def close(self) -> None:
        """Close the session and its transport. Idempotent."""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            self._emitter.emit(
                EventType.DISCONNECT,
                address=self._transport.address,
                port=self._transport.port,
            )
            conn.close()
            await conn.wait_closed()
        self._transport.close()


Handshaker = Callable[[TransportConnection, str, AuthContext, float], Awaitable[SessionHandle]]


async def asyncssh_handshake(
    transport: TransportConnection,
    username: str,
    auth: AuthContext,
    timeout: float,
) -> SessionHandle:
    """
    Run the SSH handshake over an already-dialled transport.

    Only the supplied key is offered: no agent, no password, no
    ~/.ssh/config lookups.

    Raises:
        HandshakeError: On protocol, authentication, socket or timeout failure
    """
    ctx = ErrorContext(address=transport.address, port=transport.port, username=username)
    try:
        conn = await asyncio.wait_for(
            asyncssh.connect(
                transport.address,
                transport.port,
                sock=transport.sock,
                config=None,
                username=username,
                client_keys=auth.client_keys(),
                known_hosts=None,
                agent_path=None,
                password=None,
                preferred_auth="publickey",
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        ctx.original_error = f"handshake timed out after {timeout}s"
        raise HandshakeError("SSH handshake timed out", context=ctx) from e
    except (asyncssh.Error, OSError) as e:
        ctx.original_error = str(e)
        raise HandshakeError(f"SSH handshake failed: {e}", context=ctx) from e

    log.debug("Handshake with %s:%d complete", transport.address, transport.port)
    return SessionHandle(conn, transport, username)
