"""
Typed state shared between an orchestrator and the connect step.

StepState replaces a free-form state dictionary: inputs the step reads
(settings, key, address, UI, cancellation) and the output slots it writes
(session on success, error on failure) are named, typed fields.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ssh_bringup.config import SSHSettings
from ssh_bringup.errors import SSHError
from ssh_bringup.session import SessionHandle
from ssh_bringup.ui import ConsoleUi, Ui


class CancellationSignal:
    """
    Cancellation flag owned by the orchestrator.

    Backed by threading.Event so it can be set from a signal handler or
    another thread; the connect step only ever reads it.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def request(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def __bool__(self) -> bool:
        return self._event.is_set()


@dataclass
class StepState:
    """
    Inputs and outputs of one connect step.

    Inputs:
        settings: Username, port and overall timeout
        private_key: Raw private-key material
        target_address: Address of the provisioned machine
        ui: Progress sink
        cancellation: Orchestrator-owned cancellation flag

    Outputs:
        session: Set on success
        error: Set on failure
    """
    settings: SSHSettings
    private_key: bytes | str = field(repr=False)
    target_address: str
    ui: Ui = field(default_factory=ConsoleUi)
    cancellation: CancellationSignal = field(default_factory=CancellationSignal)
    session: SessionHandle | None = None
    error: SSHError | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancellation.is_set()
