#!/usr/bin/env python3
"""Vault errors - Structured outcomes returned by the engine.

The engine never prints. Every failure is a VaultError subclass carrying a
stable code; the CLI turns codes into messages through ERROR_CODES.
"""

from typing import Optional


# Error codes
ERROR_CODES = {
    "VAULT_ERROR": "Vault operation failed",
    # Wrong password and tampering share one message
    "AUTH_FAILED": "Invalid master password or vault has been tampered with",
    "CORRUPT": "Vault file is malformed or truncated",
    "UNSUPPORTED_VERSION": "Vault format version is not supported by this build",
    "DOWNGRADE": "Vault key derivation settings are weaker than previously accepted",
    "NOT_FOUND": "Entry not found",
    "BUSY": "Vault is busy (locked by another process)",
    "IO_ERROR": "File system error",
    "ALREADY_EXISTS": "Vault already exists",
    "READ_ONLY": "Vault was opened read-only",
    "AMBIGUOUS": "Entry selector matches more than one entry",
}


class VaultError(Exception):
    """Base class for every engine failure."""

    code = "VAULT_ERROR"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or ERROR_CODES[self.code])

    @property
    def message(self) -> str:
        return str(self)


class AuthenticationFailure(VaultError):
    """Wrong password, or a ciphertext/tag/header that fails verification."""

    code = "AUTH_FAILED"


class CorruptFormat(VaultError):
    """Malformed or truncated header, entry record or sidecar."""

    code = "CORRUPT"


class UnsupportedVersion(VaultError):
    """A vault written by a newer (or unknown) format this build cannot read."""

    code = "UNSUPPORTED_VERSION"


class DowngradeRejected(VaultError):
    """Header KDF parameters are weaker than the recorded strength."""

    code = "DOWNGRADE"


class NotFound(VaultError):
    """Unknown entry id or selector."""

    code = "NOT_FOUND"


class Busy(VaultError):
    """Another process holds the vault lock."""

    code = "BUSY"


class IOFailure(VaultError):
    """Filesystem error while reading, writing or committing."""

    code = "IO_ERROR"


class AlreadyExists(VaultError):
    """Refusing to overwrite an existing file."""

    code = "ALREADY_EXISTS"


class ReadOnlyVault(VaultError):
    """Mutation attempted through a read-only handle."""

    code = "READ_ONLY"


class AmbiguousSelector(VaultError):
    """An id prefix that matches several entries."""

    code = "AMBIGUOUS"


def describe(error: VaultError) -> str:
    """Message suitable for showing to the user.

    AUTH_FAILED always renders the generic message so that the wording never
    reveals which check failed.
    """
    if error.code == "AUTH_FAILED":
        return ERROR_CODES["AUTH_FAILED"]
    return error.message
