"""
Credential adapter: raw private-key bytes to an auth context.

The step receives key material in memory (typically generated by the
provisioning step that created the machine), so nothing here touches the
filesystem or the network. Import errors are classified so the terminal
error message can say what was wrong with the key.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import asyncssh

from ssh_bringup.errors import CredentialError


@dataclass(frozen=True)
class AuthContext:
    """
    Imported private key ready to be offered during the handshake.

    Only public facts about the key (algorithm, fingerprint) are exposed
    for logging.
    """
    key: asyncssh.SSHKey

    @property
    def algorithm(self) -> str:
        """Return the key algorithm, e.g. ``ssh-ed25519``."""
        return self.key.get_algorithm()

    @property
    def fingerprint(self) -> str:
        """Return the SHA256 fingerprint of the public key."""
        return self.key.get_fingerprint()

    def client_keys(self) -> list[asyncssh.SSHKey]:
        """Return the key list in the form asyncssh.connect expects."""
        return [self.key]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (no secret material)."""
        return {"algorithm": self.algorithm, "fingerprint": self.fingerprint}


def _classify_import_error(message: str) -> str:
    message = message.lower()
    if "passphrase" in message or "decrypt" in message:
        return "wrong_passphrase"
    if "format" in message or "invalid" in message or "unknown" in message:
        return "invalid_format"
    return "import_error"


def build_auth_context(
    private_key: bytes | str,
    passphrase: str | None = None,
) -> AuthContext:
    """
    Import private key material into an AuthContext.

    Args:
        private_key: Key in any format asyncssh can import (OpenSSH, PEM PKCS#1/#8)
        passphrase: Passphrase for encrypted keys

    Returns:
        AuthContext wrapping the imported key

    Raises:
        CredentialError: If the key is empty, malformed, or cannot be decrypted
    """
    if isinstance(private_key, str):
        private_key = private_key.encode("utf-8")

    if not private_key.strip():
        raise CredentialError("Private key is empty", reason="empty")

    try:
        key = asyncssh.import_private_key(private_key, passphrase)
    except asyncssh.KeyImportError as e:
        raise CredentialError(
            f"Failed to import private key: {e}",
            reason=_classify_import_error(str(e)),
        ) from e
    except (ValueError, TypeError) as e:
        # Garbage input can fail inside the decoders before KeyImportError
        raise CredentialError(
            f"Failed to import private key: {e}",
            reason="invalid_format",
        ) from e

    return AuthContext(key=key)
