"""
TCP transport for connection attempts.

Provides:
- TransportConnection: owned socket with idempotent close
- tcp_dial: bounded-time dial on the running event loop
- Dialer: the callable type the attempt loop accepts

Each dial creates a fresh socket. The attempt loop owns it until a
handshake succeeds, after which the session handle owns it; whoever owns it
last closes it, and closing twice is harmless.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable

from ssh_bringup.errors import DialError, ErrorContext

log = logging.getLogger(__name__)


class TransportConnection:
    """A connected, non-blocking TCP socket to the target."""

    def __init__(self, sock: socket.socket, address: str, port: int) -> None:
        self._sock = sock
        self._address = address
        self._port = port
        self._closed = False

    @property
    def sock(self) -> socket.socket:
        """Return the underlying socket."""
        assert not self._closed, "Transport already closed"
        return self._sock

    @property
    def address(self) -> str:
        return self._address

    @property
    def port(self) -> int:
        return self._port

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._sock.close()
        log.debug("Closed transport to %s:%d", self._address, self._port)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<TransportConnection {self._address}:{self._port} {state}>"


Dialer = Callable[[str, int, float], Awaitable[TransportConnection]]


async def _connect_any(
    loop: asyncio.AbstractEventLoop,
    address: str,
    port: int,
) -> TransportConnection:
    infos = await loop.getaddrinfo(address, port, type=socket.SOCK_STREAM)
    last_error: OSError | None = None

    for family, sock_type, proto, _, sockaddr in infos:
        sock = socket.socket(family, sock_type, proto)
        sock.setblocking(False)
        try:
            await loop.sock_connect(sock, sockaddr)
        except OSError as e:
            sock.close()
            last_error = e
            continue
        except BaseException:
            # Cancelled by the dial timeout: never leak the half-open socket
            sock.close()
            raise
        return TransportConnection(sock, address, port)

    if last_error is None:
        last_error = OSError(f"no addresses found for {address}")
    raise last_error


async def tcp_dial(address: str, port: int, timeout: float) -> TransportConnection:
    """
    Open a TCP connection to address:port within timeout seconds.

    Tries every resolved address in order, like socket.create_connection.

    Raises:
        DialError: If resolution fails, every address refuses, or time runs out
    """
    loop = asyncio.get_running_loop()
    ctx = ErrorContext(address=address, port=port)
    try:
        return await asyncio.wait_for(_connect_any(loop, address, port), timeout=timeout)
    except asyncio.TimeoutError as e:
        ctx.original_error = f"dial timed out after {timeout}s"
        raise DialError(f"Dial to {address}:{port} timed out", context=ctx) from e
    except OSError as e:
        ctx.original_error = str(e)
        raise DialError(f"Dial to {address}:{port} failed: {e}", context=ctx) from e
