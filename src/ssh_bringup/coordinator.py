"""
Wait coordinator: overall deadline and cancellation for an attempt loop.

Provides:
- StepAction: CONTINUE or HALT, the verdict handed back to the orchestrator
- WaitResult: the coordinator's single terminal decision
- WaitCoordinator: waits on the outcome future, the deadline and a poll tick

Cancellation is polled, so it is observed within one poll interval of being
requested, independently of how long the overall timeout is.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ssh_bringup.attempt import AttemptOutcome
from ssh_bringup.errors import Cancelled, ConnectTimeout, ErrorContext, SSHError
from ssh_bringup.events import EventEmitter, EventType
from ssh_bringup.session import SessionHandle

log = logging.getLogger(__name__)


class StepAction(str, Enum):
    """What the orchestrator should do after a step."""
    CONTINUE = "continue"
    HALT = "halt"


@dataclass(frozen=True)
class WaitResult:
    """Terminal decision of one coordinator wait."""
    action: StepAction
    session: SessionHandle | None = None
    error: SSHError | None = None

    def __post_init__(self) -> None:
        if self.action == StepAction.CONTINUE:
            assert self.session is not None and self.error is None, \
                "CONTINUE requires a session and no error"
        else:
            assert self.session is None and self.error is not None, \
                "HALT requires an error and no session"


class WaitCoordinator:
    """
    Bounds an attempt loop's run time and honours external cancellation.

    Usage:
        coordinator = WaitCoordinator(60.0, is_cancelled=state.cancellation.is_set)
        result = await coordinator.wait(loop.outcome, loop.stop)
    """

    def __init__(
        self,
        timeout_sec: float,
        is_cancelled: Callable[[], bool],
        poll_interval_sec: float = 1.0,
        emitter: EventEmitter | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        assert timeout_sec > 0, f"timeout_sec must be positive, got {timeout_sec}"
        assert poll_interval_sec > 0, \
            f"poll_interval_sec must be positive, got {poll_interval_sec}"

        self._timeout_sec = timeout_sec
        self._is_cancelled = is_cancelled
        self._poll_interval_sec = poll_interval_sec
        self._emitter = emitter or EventEmitter()
        self._context = context

    def _new_context(self) -> ErrorContext:
        return self._context.target() if self._context is not None else ErrorContext()

    async def wait(
        self,
        outcome: asyncio.Future[AttemptOutcome],
        stop: Callable[[], None],
    ) -> WaitResult:
        """
        Wait for the first of: an outcome, the deadline, a cancellation.

        Args:
            outcome: Future the attempt loop resolves with its single outcome
            stop: Non-blocking stop request for the attempt loop; called
                  before returning any HALT decision

        Returns:
            Exactly one WaitResult
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_sec
        log.debug("Waiting up to %.1fs for SSH connection", self._timeout_sec)

        while True:
            remaining = deadline - loop.time()
            if remaining > 0:
                await asyncio.wait({outcome}, timeout=min(self._poll_interval_sec, remaining))

            if outcome.done():
                return self._decide(outcome.result(), stop)

            # Cancellation requested during the final slice still wins over the deadline.
            if self._is_cancelled():
                log.debug("Interrupt detected, quitting waiting for SSH.")
                return self._halt(
                    Cancelled(
                        "Interrupt detected, quitting waiting for SSH.",
                        context=self._new_context(),
                    ),
                    stop,
                    reason="cancelled",
                )

            if loop.time() >= deadline:
                return self._halt(
                    ConnectTimeout(
                        "Timeout waiting for SSH to become available.",
                        context=self._new_context(),
                    ),
                    stop,
                    reason="timeout",
                )

    def _decide(
        self,
        result: AttemptOutcome,
        stop: Callable[[], None],
    ) -> WaitResult:
        if result.session is not None:
            self._emitter.emit(EventType.WAIT, decision=StepAction.CONTINUE.value, reason="connected")
            return WaitResult(StepAction.CONTINUE, session=result.session)

        assert result.error is not None
        return self._halt(result.error, stop, reason="attempt_failed")

    def _halt(
        self,
        error: SSHError,
        stop: Callable[[], None],
        reason: str,
    ) -> WaitResult:
        stop()
        self._emitter.emit(
            EventType.WAIT,
            decision=StepAction.HALT.value,
            reason=reason,
            error_type=error.error_type,
        )
        return WaitResult(StepAction.HALT, error=error)
