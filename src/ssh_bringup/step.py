"""
Connect step: wait for a freshly provisioned machine to accept SSH.

ConnectSSHStep ties the pieces together:

    credentials  ->  AttemptLoop (background task)
                          |  outcome future
                          v
                     WaitCoordinator (deadline + cancellation poll)
                          |
                          v
                 state.session / state.error

run() returns CONTINUE with state.session set, or HALT with state.error set
to one of CredentialError, HandshakeExhausted, ConnectTimeout or Cancelled.
Two further cases halt with a plain SSHError: an unusable target address
(nothing is dialled) and an unexpected crash of the attempt loop.
Progress lines for failed dials and handshakes go to state.ui.message().
cleanup() must be called once the orchestrator is done with the step,
whatever run() returned; calling it again does nothing.

Usage:
    state = StepState(settings=SSHSettings(timeout_sec=300),
                      private_key=key_bytes, target_address=ip)
    step = ConnectSSHStep()
    try:
        if await step.run(state) is StepAction.CONTINUE:
            await state.session.exec("uptime")
    finally:
        await step.cleanup(state)
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ssh_bringup.attempt import AttemptLoop
from ssh_bringup.config import AttemptPolicy, ConnectionConfig
from ssh_bringup.coordinator import StepAction, WaitCoordinator
from ssh_bringup.credentials import build_auth_context
from ssh_bringup.errors import CredentialError, ErrorContext, SSHError
from ssh_bringup.events import EventCollector, EventEmitter, EventType
from ssh_bringup.session import Handshaker, asyncssh_handshake
from ssh_bringup.state import StepState
from ssh_bringup.transport import Dialer, tcp_dial

log = logging.getLogger(__name__)


class ConnectSSHStep:
    """
    One-shot step establishing an SSH session to state.target_address.

    Args:
        policy: Retry/timing policy (defaults: 10s dial, 0.5s backoff,
                more than 5 failed handshakes abort, 1s cancellation poll)
        dialer: TCP dial capability
        handshaker: SSH handshake capability
        event_collector: Optional in-memory collector for step events
        event_log_path: Optional JSONL file for step events
    """

    def __init__(
        self,
        policy: AttemptPolicy | None = None,
        *,
        dialer: Dialer = tcp_dial,
        handshaker: Handshaker = asyncssh_handshake,
        event_collector: EventCollector | None = None,
        event_log_path: Path | str | None = None,
    ) -> None:
        self._policy = policy or AttemptPolicy()
        self._dialer = dialer
        self._handshaker = handshaker
        self._event_collector = event_collector
        self._event_log_path = event_log_path

        self._emitter: EventEmitter | None = None
        self._attempt_loop: AttemptLoop | None = None
        self._ran = False

    @property
    def attempt_loop(self) -> AttemptLoop | None:
        """The attempt loop started by run(), if it got that far."""
        return self._attempt_loop

    async def run(self, state: StepState) -> StepAction:
        """Connect, publishing the session or the error into state."""
        assert not self._ran, "ConnectSSHStep.run() may only be called once"
        self._ran = True

        self._emitter = EventEmitter(
            collector=self._event_collector,
            jsonl_path=self._event_log_path,
        )

        try:
            auth = build_auth_context(state.private_key)
        except CredentialError as e:
            return self._fail(state, e, f"Error setting up SSH config: {e}")

        try:
            config = ConnectionConfig.from_settings(
                state.settings,
                address=state.target_address,
                private_key=state.private_key,
            )
        except ValueError as e:
            return self._fail(
                state,
                SSHError(str(e), context=ErrorContext(original_error=str(e))),
                f"Error setting up SSH config: {e}",
            )
        self._emitter.bind(address=config.address, port=config.port)
        self._emitter.emit(
            EventType.CONNECT,
            status="initiating",
            key_algorithm=auth.algorithm,
            **config.to_dict(),
        )

        state.ui.say("Connecting to the machine via SSH...")
        loop = AttemptLoop(
            config,
            auth,
            self._policy,
            dialer=self._dialer,
            handshaker=self._handshaker,
            emitter=self._emitter,
            progress=state.ui.message,
        )
        self._attempt_loop = loop
        loop.start()

        coordinator = WaitCoordinator(
            config.timeout_sec,
            is_cancelled=state.cancellation.is_set,
            poll_interval_sec=self._policy.poll_interval_sec,
            emitter=self._emitter,
            context=ErrorContext(
                address=config.address,
                port=config.port,
                username=config.username,
            ),
        )
        result = await coordinator.wait(loop.outcome, loop.stop)

        if result.action == StepAction.HALT:
            assert result.error is not None
            result.error.context.record_progress(loop.attempts, loop.handshake_failures)
            return self._fail(state, result.error, str(result.error))

        assert result.session is not None
        result.session.attach_emitter(self._emitter)
        state.session = result.session
        self._emitter.emit(
            EventType.CONNECT,
            status="connected",
            attempts=loop.attempts,
            handshake_failures=loop.handshake_failures,
        )
        state.ui.say("Connected to SSH!")
        return StepAction.CONTINUE

    def _fail(self, state: StepState, error: SSHError, message: str) -> StepAction:
        assert self._emitter is not None
        state.error = error
        self._emitter.emit(EventType.ERROR, **error.to_dict())
        state.ui.error(message)
        log.debug("Connect step halted: %s", message)
        return StepAction.HALT

    async def cleanup(self, state: StepState) -> None:
        """
        Release everything the step created. Idempotent.

        Stops and reaps the attempt loop, closes the published session (if
        any) and finally the last transport the loop dialled.
        """
        loop = self._attempt_loop
        if loop is not None:
            loop.stop()
            task = loop.task
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if state.session is not None:
            await state.session.close()

        if loop is not None:
            loop.release_transport()

        if self._emitter is not None:
            self._emitter.close()
