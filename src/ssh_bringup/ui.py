"""
Human-facing progress sinks.

The step writes short progress lines ("Connecting to the machine via
SSH...") and at most one error line; it never reads anything back.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import IO, Protocol


class Ui(Protocol):
    """Sink for user-visible messages."""

    def say(self, message: str) -> None:
        """Top-level progress line."""
        ...

    def message(self, message: str) -> None:
        """Secondary detail line."""
        ...

    def error(self, message: str) -> None:
        """Error line."""
        ...


class ConsoleUi:
    """Writes messages to a text stream (stderr by default)."""

    def __init__(self, stream: IO[str] | None = None, prefix: str = "==> ") -> None:
        self._stream = stream if stream is not None else sys.stderr
        self._prefix = prefix

    def say(self, message: str) -> None:
        print(f"{self._prefix}{message}", file=self._stream, flush=True)

    def message(self, message: str) -> None:
        print(f"{' ' * len(self._prefix)}{message}", file=self._stream, flush=True)

    def error(self, message: str) -> None:
        print(f"{self._prefix}Error: {message}", file=self._stream, flush=True)


@dataclass
class RecordingUi:
    """Keeps messages in memory, tagged by kind. Used by tests."""
    records: list[tuple[str, str]] = field(default_factory=list)

    def say(self, message: str) -> None:
        self.records.append(("say", message))

    def message(self, message: str) -> None:
        self.records.append(("message", message))

    def error(self, message: str) -> None:
        self.records.append(("error", message))

    @property
    def errors(self) -> list[str]:
        return [text for kind, text in self.records if kind == "error"]

    @property
    def said(self) -> list[str]:
        return [text for kind, text in self.records if kind == "say"]

    @property
    def messages(self) -> list[str]:
        return [text for kind, text in self.records if kind == "message"]
