"""ssh-bringup: wait for a freshly provisioned machine to accept SSH."""

__version__ = "0.1.0"

from ssh_bringup.attempt import AttemptLoop, AttemptOutcome
from ssh_bringup.config import (
    AttemptPolicy,
    ConnectionConfig,
    SSHSettings,
    parse_duration,
)
from ssh_bringup.coordinator import StepAction, WaitCoordinator, WaitResult
from ssh_bringup.credentials import AuthContext, build_auth_context
from ssh_bringup.errors import (
    Cancelled,
    ConnectTimeout,
    CredentialError,
    DialError,
    ErrorContext,
    HandshakeError,
    HandshakeExhausted,
    SSHError,
)
from ssh_bringup.events import Event, EventCollector, EventEmitter, EventType
from ssh_bringup.session import ExecResult, SessionHandle, asyncssh_handshake
from ssh_bringup.state import CancellationSignal, StepState
from ssh_bringup.step import ConnectSSHStep
from ssh_bringup.transport import TransportConnection, tcp_dial
from ssh_bringup.ui import ConsoleUi, RecordingUi, Ui
from ssh_bringup.validation import (
    validate_address,
    validate_hostname,
    validate_port,
    validate_username,
)

__all__ = [
    # Step
    "ConnectSSHStep",
    "StepAction",
    "StepState",
    "CancellationSignal",
    # Core
    "AttemptLoop",
    "AttemptOutcome",
    "WaitCoordinator",
    "WaitResult",
    # Config
    "AttemptPolicy",
    "ConnectionConfig",
    "SSHSettings",
    "parse_duration",
    # Credentials
    "AuthContext",
    "build_auth_context",
    # Transport and session
    "TransportConnection",
    "tcp_dial",
    "SessionHandle",
    "ExecResult",
    "asyncssh_handshake",
    # Errors
    "SSHError",
    "ErrorContext",
    "CredentialError",
    "HandshakeExhausted",
    "ConnectTimeout",
    "Cancelled",
    "DialError",
    "HandshakeError",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # UI
    "Ui",
    "ConsoleUi",
    "RecordingUi",
    # Validation
    "validate_address",
    "validate_hostname",
    "validate_port",
    "validate_username",
]
