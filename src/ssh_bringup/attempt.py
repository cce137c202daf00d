"""
Background attempt loop: dial + handshake until success, budget, or stop.

Provides:
- AttemptOutcome: the single terminal result of a loop (session or error)
- AttemptLoop: asyncio worker publishing at most one AttemptOutcome

The loop tolerates any number of failed dials (the machine may still be
booting) but only a bounded number of failed handshakes after a successful
dial. It never enforces the overall deadline itself; the coordinator does
that and tells the loop to stop.

    loop = AttemptLoop(config, auth, policy)
    task = loop.start()
    outcome = await loop.outcome      # or hand loop.outcome to a coordinator
    ...
    loop.stop()
    loop.release_transport()
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from ssh_bringup.config import AttemptPolicy, ConnectionConfig
from ssh_bringup.credentials import AuthContext
from ssh_bringup.errors import (
    DialError,
    ErrorContext,
    HandshakeError,
    HandshakeExhausted,
    SSHError,
)
from ssh_bringup.events import EventEmitter, EventType
from ssh_bringup.session import Handshaker, SessionHandle, asyncssh_handshake
from ssh_bringup.transport import Dialer, TransportConnection, tcp_dial

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptOutcome:
    """Terminal result of an attempt loop: exactly one of session or error."""
    session: SessionHandle | None = None
    error: SSHError | None = None

    def __post_init__(self) -> None:
        assert (self.session is None) != (self.error is None), \
            "AttemptOutcome needs exactly one of session or error"

    @property
    def ok(self) -> bool:
        return self.session is not None


class AttemptLoop:
    """
    Worker that repeatedly connects to one target.

    Terminates in exactly one of two ways:
    - silently, after observing stop(); nothing is published
    - by publishing one AttemptOutcome on `outcome`

    The transport from a failed attempt is closed before the next dial.
    The last transport created stays reachable through `transport` so the
    owner can release it once the loop is finished.

    `progress`, if given, receives one human-readable line per failed dial
    or handshake, carrying the attempt count.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        auth: AuthContext,
        policy: AttemptPolicy | None = None,
        *,
        dialer: Dialer = tcp_dial,
        handshaker: Handshaker = asyncssh_handshake,
        emitter: EventEmitter | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config
        self._auth = auth
        self._policy = policy or AttemptPolicy()
        self._dialer = dialer
        self._handshaker = handshaker
        self._emitter = emitter or EventEmitter()
        self._progress = progress

        self._stop = asyncio.Event()
        self._outcome: asyncio.Future[AttemptOutcome] | None = None
        self._task: asyncio.Task[None] | None = None
        self._transport: TransportConnection | None = None

        self.attempts = 0
        self.handshake_failures = 0

    @property
    def outcome(self) -> asyncio.Future[AttemptOutcome]:
        """Future resolved with the loop's single outcome."""
        assert self._outcome is not None, "Loop not started. Call start() first."
        return self._outcome

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    @property
    def transport(self) -> TransportConnection | None:
        """Last transport created by a successful dial, if any."""
        return self._transport

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> asyncio.Task[None]:
        """Spawn the worker task. A loop can only be started once."""
        assert self._task is None, "AttemptLoop already started"
        self._outcome = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run_guarded())
        return self._task

    def stop(self) -> None:
        """Ask the worker to stop. Non-blocking and idempotent."""
        if not self._stop.is_set():
            log.debug("Stop requested after %d attempts", self.attempts)
        self._stop.set()

    def release_transport(self) -> None:
        """Close the last transport, if any. Idempotent."""
        if self._transport is not None:
            self._transport.close()

    async def _run_guarded(self) -> None:
        try:
            await self._run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A crashed worker must still resolve the outcome, otherwise
            # the coordinator would sit out the whole deadline
            log.exception("Attempt loop crashed")
            await self._publish(AttemptOutcome(error=SSHError(
                f"Unexpected error while connecting: {e}",
                context=self._error_context(original_error=str(e)),
            )))

    async def _run(self) -> None:
        address = self._config.address
        port = self._config.port

        while True:
            if self._stop.is_set():
                log.debug("Attempt loop stopping before attempt %d", self.attempts + 1)
                return

            # Previous attempt failed: its transport must not outlive it
            self.release_transport()

            self.attempts += 1
            log.debug(
                "Opening TCP conn for SSH to %s:%d (attempt %d)",
                address, port, self.attempts,
            )
            try:
                transport = await self._dialer(address, port, self._policy.dial_timeout_sec)
            except (DialError, OSError, asyncio.TimeoutError) as e:
                log.debug("Dial attempt %d failed: %s", self.attempts, e)
                self._report(f"Attempt {self.attempts}: TCP dial failed: {e}")
                self._emitter.emit(
                    EventType.DIAL,
                    status="failed",
                    attempt=self.attempts,
                    error=str(e),
                )
                await self._backoff()
                continue

            self._transport = transport
            self._emitter.emit(EventType.DIAL, status="connected", attempt=self.attempts)

            if self._stop.is_set():
                log.debug("Stop received during dial, abandoning attempt %d", self.attempts)
                return

            log.debug("TCP connection made. Attempting SSH handshake.")
            try:
                session = await self._handshaker(
                    transport,
                    self._config.username,
                    self._auth,
                    self._policy.handshake_timeout_sec,
                )
            except (HandshakeError, OSError, asyncio.TimeoutError) as e:
                self.handshake_failures += 1
                log.debug("SSH handshake error: %s", e)
                self._report(
                    f"Attempt {self.attempts}: SSH handshake failed "
                    f"({self.handshake_failures}/{self._policy.max_handshake_failures} "
                    f"tolerated): {e}"
                )
                self._emitter.emit(
                    EventType.HANDSHAKE,
                    status="failed",
                    attempt=self.attempts,
                    handshake_failures=self.handshake_failures,
                    error=str(e),
                )
                if self.handshake_failures > self._policy.max_handshake_failures:
                    await self._publish(AttemptOutcome(error=self._exhausted(e)))
                    return
                await self._backoff()
                continue

            log.debug("Connected to SSH!")
            self._emitter.emit(
                EventType.HANDSHAKE,
                status="success",
                attempt=self.attempts,
                handshake_failures=self.handshake_failures,
            )
            await self._publish(AttemptOutcome(session=session))
            return

    def _report(self, message: str) -> None:
        if self._progress is not None:
            self._progress(message)

    async def _backoff(self) -> None:
        """Sleep the backoff interval, waking early if stop() is called."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._policy.backoff_sec)
        except asyncio.TimeoutError:
            pass

    async def _publish(self, outcome: AttemptOutcome) -> None:
        assert self._outcome is not None
        if self._stop.is_set() or self._outcome.done():
            # Nobody is listening any more; a late session must not leak
            log.debug("Discarding outcome produced after stop")
            if outcome.session is not None:
                await outcome.session.close()
            return
        self._outcome.set_result(outcome)

    def _exhausted(self, last_error: Exception) -> HandshakeExhausted:
        return HandshakeExhausted(
            f"Error connecting to SSH: handshake failed {self.handshake_failures} times, "
            f"last error: {last_error}",
            context=self._error_context(original_error=str(last_error)),
        )

    def _error_context(self, original_error: str | None = None) -> ErrorContext:
        return ErrorContext(
            address=self._config.address,
            port=self._config.port,
            username=self._config.username,
            attempts=self.attempts,
            handshake_failures=self.handshake_failures,
            original_error=original_error,
        )
