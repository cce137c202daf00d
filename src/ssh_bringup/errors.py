"""
Error taxonomy for the SSH bring-up step.

Terminal errors end the step and are written to ``state.error``:

- CredentialError: the private key could not be imported; nothing was dialled
- HandshakeExhausted: the target kept accepting TCP but refusing SSH
- ConnectTimeout: the overall deadline elapsed
- Cancelled: the orchestrator asked the step to stop
- SSHError itself: anything outside the above, namely an invalid target
  address rejected before dialling or an unexpected attempt loop crash

Transient errors are raised by the dialer and handshaker and absorbed by the
attempt loop, which retries them:

- DialError
- HandshakeError

Every error carries an ErrorContext so the ERROR event in the JSONL log says
which target failed, after how many attempts and why.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar


@dataclass
class ErrorContext:
    """
    Where and how far a connection step got before failing.

    ``extra`` holds error-specific fields (for example a credential
    failure's ``reason``); its keys must not reuse the names of the other
    fields, since to_dict() flattens it into the same mapping.
    """
    address: str | None = None
    port: int | None = None
    username: str | None = None
    attempts: int | None = None
    handshake_failures: int | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def target(self) -> "ErrorContext":
        """A fresh context carrying only the address, port and username."""
        return ErrorContext(address=self.address, port=self.port, username=self.username)

    def record_progress(self, attempts: int, handshake_failures: int) -> None:
        """Stamp the attempt counters reached before the step ended."""
        self.attempts = attempts
        self.handshake_failures = handshake_failures

    def to_dict(self) -> dict[str, Any]:
        """Flatten to a dict for logging; unset fields are left out."""
        named = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        clashes = self.extra.keys() & {f.name for f in fields(self)}
        assert not clashes, f"extra keys shadow context fields: {sorted(clashes)}"
        return {**named, **self.extra}


class SSHError(Exception):
    """
    Base exception for all bring-up errors.

    ``transient`` marks the errors the attempt loop retries; everything
    else ends the step.
    """

    transient: ClassVar[bool] = False

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"SSHError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context if context is not None else ErrorContext()

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Payload of the step's ERROR event."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            "transient": self.transient,
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Terminal errors
# ---------------------------------------------------------------------------

class CredentialError(SSHError):
    """
    Private key material could not be turned into an auth context.

    ``reason`` is one of ``empty``, ``wrong_passphrase``, ``invalid_format``
    or ``import_error``.
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message, context)
        if reason:
            self.context.extra["reason"] = reason

    @property
    def reason(self) -> str | None:
        return self.context.extra.get("reason")


class HandshakeExhausted(SSHError):
    """The target accepted TCP dials but refused the handshake too many times."""


class ConnectTimeout(SSHError):
    """The overall deadline elapsed without a usable session."""


class Cancelled(SSHError):
    """Cancellation was requested before the step succeeded or timed out."""


# ---------------------------------------------------------------------------
# Transient errors (retried inside the attempt loop)
# ---------------------------------------------------------------------------

class DialError(SSHError):
    """TCP dial failed: refused, unreachable, unresolvable or timed out."""

    transient = True


class HandshakeError(SSHError):
    """SSH handshake on a dialled transport failed."""

    transient = True
