"""
Configuration for the SSH bring-up step.

Provides:
- parse_duration: "1m30s"-style duration strings to seconds
- SSHSettings: user-facing settings (username, port, overall timeout)
- ConnectionConfig: everything one step invocation needs to connect
- AttemptPolicy: retry/timeout tunables for the attempt loop and coordinator

Defaults follow what provisioning tools typically use for fresh images:
user ``root`` on port 22 with a one-minute overall timeout.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Final, Mapping

from ssh_bringup.validation import validate_address, validate_port, validate_username

DEFAULT_USERNAME: Final[str] = "root"
DEFAULT_PORT: Final[int] = 22
DEFAULT_TIMEOUT_SEC: Final[float] = 60.0

_DURATION_UNITS: Final[dict[str, float]] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART: Final[re.Pattern[str]] = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


def parse_duration(value: str | int | float) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or unit-suffixed strings that may be
    chained, largest unit first or not: ``"500ms"``, ``"90s"``, ``"1m30s"``,
    ``"2h"``.

    Raises:
        ValueError: If the value cannot be parsed or is negative
    """
    if isinstance(value, bool):
        raise ValueError("duration must be a number or string, got bool")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        if not text:
            raise ValueError("duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"invalid duration: {value!r}") from None
    else:
        raise ValueError(f"duration must be a number or string, got {type(value).__name__}")

    if not math.isfinite(seconds):
        raise ValueError(f"duration must be finite, got {value!r}")
    if seconds < 0:
        raise ValueError(f"duration must not be negative, got {value!r}")
    return seconds


@dataclass(frozen=True)
class SSHSettings:
    """
    User-facing SSH settings for a provisioned machine.

    Attributes:
        username: Login user on the target
        port: SSH port on the target
        timeout_sec: Overall time budget for the whole connection step
    """
    username: str = DEFAULT_USERNAME
    port: int = DEFAULT_PORT
    timeout_sec: float = DEFAULT_TIMEOUT_SEC

    def __post_init__(self) -> None:
        validate_username(self.username)
        validate_port(self.port)
        if self.timeout_sec <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout_sec}")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SSHSettings":
        """
        Build settings from a raw configuration mapping.

        Recognised keys are ``ssh_username``, ``ssh_port`` and
        ``ssh_timeout`` (a duration, see parse_duration). Missing or empty
        values fall back to the defaults; unknown keys are ignored.
        """
        username = raw.get("ssh_username") or DEFAULT_USERNAME
        port = raw.get("ssh_port") or DEFAULT_PORT
        if isinstance(port, str):
            if not port.isdigit():
                raise ValueError(f"ssh_port must be an integer, got {port!r}")
            port = int(port)

        timeout = raw.get("ssh_timeout")
        timeout_sec = DEFAULT_TIMEOUT_SEC if timeout in (None, "") else parse_duration(timeout)

        return cls(username=username, port=port, timeout_sec=timeout_sec)


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Immutable inputs of one connection step.

    The private key is kept out of repr so configs can be logged.
    """
    address: str
    username: str = DEFAULT_USERNAME
    port: int = DEFAULT_PORT
    private_key: bytes = field(default=b"", repr=False)
    timeout_sec: float = DEFAULT_TIMEOUT_SEC

    def __post_init__(self) -> None:
        # Frozen: normalised values go through object.__setattr__
        object.__setattr__(self, "address", validate_address(self.address))
        validate_username(self.username)
        validate_port(self.port)
        if self.timeout_sec <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout_sec}")

    @classmethod
    def from_settings(
        cls,
        settings: SSHSettings,
        address: str,
        private_key: bytes | str,
    ) -> "ConnectionConfig":
        """Combine user settings with the provisioned address and key."""
        if isinstance(private_key, str):
            private_key = private_key.encode("utf-8")
        return cls(
            address=address,
            username=settings.username,
            port=settings.port,
            private_key=private_key,
            timeout_sec=settings.timeout_sec,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (excludes key material)."""
        return {
            "address": self.address,
            "port": self.port,
            "username": self.username,
            "timeout_sec": self.timeout_sec,
        }


@dataclass(frozen=True)
class AttemptPolicy:
    """
    Retry and timing policy for a connection step.

    Attributes:
        dial_timeout_sec: Bound on a single TCP dial
        handshake_timeout_sec: Bound on a single SSH handshake
        backoff_sec: Fixed pause between failed attempts
        max_handshake_failures: Failed handshakes tolerated; one more aborts
        poll_interval_sec: How often the coordinator checks for cancellation
    """
    dial_timeout_sec: float = 10.0
    handshake_timeout_sec: float = 10.0
    backoff_sec: float = 0.5
    max_handshake_failures: int = 5
    poll_interval_sec: float = 1.0

    def __post_init__(self) -> None:
        """Validate policy configuration."""
        assert self.dial_timeout_sec > 0, \
            f"dial_timeout_sec must be positive, got {self.dial_timeout_sec}"
        assert self.handshake_timeout_sec > 0, \
            f"handshake_timeout_sec must be positive, got {self.handshake_timeout_sec}"
        assert self.backoff_sec >= 0, \
            f"backoff_sec must be non-negative, got {self.backoff_sec}"
        assert self.max_handshake_failures >= 0, \
            f"max_handshake_failures must be non-negative, got {self.max_handshake_failures}"
        assert self.poll_interval_sec > 0, \
            f"poll_interval_sec must be positive, got {self.poll_interval_sec}"
