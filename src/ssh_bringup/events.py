"""
Structured event log for connection steps.

A bring-up run is a timeline: dials that were refused, handshakes that were
rejected, then the coordinator's verdict. Every record carries the wall-clock
time and the time elapsed since its emitter was created, so a JSONL log
answers "how long did the machine take to accept SSH" without any
post-processing.

Event types:
- CONNECT: step started / session published
- DIAL: one TCP dial, connected or failed
- HANDSHAKE: one SSH handshake, success or failed
- WAIT: the coordinator's decision
- EXEC: a command run on the published session
- DISCONNECT: session closed
- ERROR: the step's terminal error
"""
from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator, Mapping


class EventType(str, Enum):
    """Step event types for structured logging."""
    CONNECT = "CONNECT"
    DIAL = "DIAL"
    HANDSHAKE = "HANDSHAKE"
    WAIT = "WAIT"
    EXEC = "EXEC"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


_EVENT_TYPES = frozenset(e.value for e in EventType)


@dataclass(frozen=True)
class Event:
    """
    One timeline record.

    - event_type: The category of event
    - data: Event-specific structured data
    - timestamp: Wall-clock time (Unix ms)
    - elapsed_ms: Time since the emitter was created
    """
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    elapsed_ms: float = 0.0

    def __post_init__(self) -> None:
        assert self.event_type in _EVENT_TYPES, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {sorted(_EVENT_TYPES)}"
        assert self.timestamp > 0, f"Timestamp must be positive, got {self.timestamp}"
        assert self.elapsed_ms >= 0, f"elapsed_ms must be non-negative, got {self.elapsed_ms}"

    @property
    def status(self) -> str | None:
        """The ``status`` field most events carry, if present."""
        return self.data.get("status")

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "elapsed_ms": self.elapsed_ms,
            "data": dict(self.data),
        }

    def to_json(self) -> str:
        """Serialise to a single JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Event":
        return cls(
            event_type=raw["event_type"],
            data=dict(raw.get("data", {})),
            timestamp=raw["timestamp"],
            elapsed_ms=raw.get("elapsed_ms", 0.0),
        )


class EventCollector:
    """In-memory sink, used by tests and by the CLI's ``--events`` dump."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        assert isinstance(event, Event), f"Expected Event, got {type(event)}"
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        """Return collected events (copy)."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        """All events of one type, in emission order."""
        wanted = EventType(event_type).value
        return [e for e in self._events if e.event_type == wanted]

    def statuses(self, event_type: str | EventType) -> list[str | None]:
        """The ``status`` of each event of one type, in emission order."""
        return [e.status for e in self.get_by_type(event_type)]

    def last(self, event_type: str | EventType | None = None) -> Event | None:
        """The most recent event, optionally restricted to one type."""
        events = self._events if event_type is None else self.get_by_type(event_type)
        return events[-1] if events else None


class JSONLEventWriter:
    """
    File sink writing one JSON object per line.

    The file is opened for append, so consecutive steps of one provisioning
    run can share a log.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._file: IO[str] | None = None

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> None:
        """Open the log for appending. Opening twice is a no-op."""
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("a", encoding="utf-8")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def emit(self, event: Event) -> None:
        assert self._file is not None, "Writer not opened. Call open() first."
        self._file.write(event.to_json() + "\n")
        self._file.flush()

    def __enter__(self) -> "JSONLEventWriter":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class EventEmitter:
    """
    Stamps events and fans them out to an in-memory collector and/or a
    JSONL file.

    Fields bound with bind() (typically the target address and port) are
    added to every later event; fields passed to emit() win on conflict.
    With no sink configured, events are still built and returned.

    Usage:
        emitter = EventEmitter(collector=collector, jsonl_path="bringup.jsonl")
        emitter.bind(address="203.0.113.7", port=22)
        emitter.emit(EventType.DIAL, status="failed", attempt=1)
        emitter.close()
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._collector = collector
        self._writer: JSONLEventWriter | None = None
        self._bound: dict[str, Any] = {}
        self._started = time.monotonic()

        if jsonl_path:
            self._writer = JSONLEventWriter(jsonl_path)
            self._writer.open()

    def bind(self, **fields: Any) -> None:
        """Attach fields to every event emitted from now on."""
        self._bound.update(fields)

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """Build an event of event_type from data and dispatch it to the sinks."""
        event = Event(
            event_type=EventType(event_type).value,
            data={**self._bound, **data},
            elapsed_ms=(time.monotonic() - self._started) * 1000,
        )

        if self._collector is not None:
            self._collector.emit(event)
        if self._writer is not None:
            self._writer.emit(event)

        return event

    def close(self) -> None:
        """Close the JSONL file, if any. The collector keeps receiving events."""
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    @contextmanager
    def timed_event(
        self,
        event_type: str | EventType,
        **initial_data: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Emit event_type when the block exits, with ``duration_ms`` added.

        The block may add fields to the yielded dict. The event is emitted
        even if the block raises.

        Usage:
            with emitter.timed_event(EventType.EXEC, command="uptime") as data:
                result = await conn.run("uptime")
                data["exit_code"] = result.exit_status
        """
        event_data = dict(initial_data)
        started = time.monotonic()
        try:
            yield event_data
        finally:
            event_data["duration_ms"] = (time.monotonic() - started) * 1000
            self.emit(event_type, **event_data)


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Load every event from a JSONL log, skipping blank lines."""
    with Path(path).open(encoding="utf-8") as f:
        return [Event.from_dict(json.loads(line)) for line in f if line.strip()]
