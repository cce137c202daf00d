"""
Input validation for connection parameters.

Target addresses usually come from a cloud provider API and usernames from
user configuration; both end up in log lines and in the SSH handshake, so
they are checked for control characters and shell metacharacters before a
step is allowed to run.
"""

import ipaddress
import re
from typing import Final

# Maximum lengths per RFC 1123 and POSIX
MAX_HOSTNAME_LENGTH: Final[int] = 253
MAX_LABEL_LENGTH: Final[int] = 63
MAX_USERNAME_LENGTH: Final[int] = 32

# Characters that must never appear in an address or username
FORBIDDEN_CHARS: Final[frozenset[str]] = frozenset(
    "\x00"
    "\n\r\t"
    "`$(){}[]|;&<>\\'\""
)

_CHAR_NAMES: Final[dict[str, str]] = {
    "\x00": "null byte",
    "\n": "newline",
    "\r": "carriage return",
    "\t": "tab",
}

# Alphanumeric and hyphens, no leading/trailing hyphen
_LABEL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?$"
)

# POSIX-style: letter or underscore first
_USERNAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_-]*$"
)


def _check_forbidden_chars(value: str, field_name: str) -> None:
    """Raise ValueError if value contains a forbidden character."""
    for char in value:
        if char in FORBIDDEN_CHARS:
            char_desc = _CHAR_NAMES.get(char, repr(char))
            raise ValueError(f"{field_name} contains forbidden character: {char_desc}")


def _require_str(value: object, field_name: str) -> str:
    # Type first, so None gets the right message
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    return value


def validate_hostname(hostname: str) -> str:
    """
    Validate and normalise a DNS hostname per RFC 952/1123.

    Returns:
        The hostname in lowercase

    Raises:
        ValueError: If the hostname is invalid, with a clear message
    """
    hostname = _require_str(hostname, "hostname")
    _check_forbidden_chars(hostname, "hostname")

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        raise ValueError(
            f"hostname exceeds maximum length of {MAX_HOSTNAME_LENGTH} characters "
            f"(got {len(hostname)})"
        )

    labels = hostname.split(".")
    for i, label in enumerate(labels):
        if not label:
            if i == 0:
                raise ValueError("hostname must not start with a dot")
            if i == len(labels) - 1:
                raise ValueError("hostname must not end with a dot")
            raise ValueError("hostname must not contain consecutive dots")

        if len(label) > MAX_LABEL_LENGTH:
            raise ValueError(
                f"hostname label '{label}' exceeds maximum length of "
                f"{MAX_LABEL_LENGTH} characters (got {len(label)})"
            )

        if not _LABEL_PATTERN.match(label):
            if label.startswith("-"):
                raise ValueError(f"hostname label '{label}' must not start with a hyphen")
            if label.endswith("-"):
                raise ValueError(f"hostname label '{label}' must not end with a hyphen")
            raise ValueError(
                f"hostname label '{label}' contains invalid characters "
                "(only alphanumeric and hyphens allowed)"
            )

    return hostname.lower()


def validate_address(address: str) -> str:
    """
    Validate a target address: an IPv4/IPv6 literal or a hostname.

    IP literals are returned in their compressed canonical form
    (``"::0001"`` becomes ``"::1"``); hostnames are lowercased.

    Raises:
        ValueError: If the address is neither a valid IP nor a valid hostname
    """
    address = _require_str(address, "address")
    try:
        return str(ipaddress.ip_address(address))
    except ValueError:
        pass
    return validate_hostname(address)


def validate_username(username: str) -> str:
    """
    Validate a username per POSIX conventions.

    Returns:
        The username unchanged

    Raises:
        ValueError: If the username is invalid, with a clear message
    """
    username = _require_str(username, "username")
    _check_forbidden_chars(username, "username")

    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(
            f"username exceeds maximum length of {MAX_USERNAME_LENGTH} characters "
            f"(got {len(username)})"
        )

    if not _USERNAME_PATTERN.match(username):
        first_char = username[0]
        if not (first_char.isalpha() or first_char == "_"):
            raise ValueError(
                f"username must start with a letter or underscore, got '{first_char}'"
            )
        for char in username:
            if not (char.isalnum() or char in "_-"):
                raise ValueError(f"username contains invalid character: {char!r}")
        raise ValueError(
            "username contains invalid characters "
            "(only alphanumeric, underscore, and hyphen allowed)"
        )

    return username


def validate_port(port: int) -> int:
    """
    Validate a TCP port number.

    Raises:
        ValueError: If the port is not an integer in 1-65535
    """
    # bool is a subclass of int
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")

    if port < 1:
        raise ValueError(f"port must be at least 1, got {port}")
    if port > 65535:
        raise ValueError(f"port must be at most 65535, got {port}")

    return port
