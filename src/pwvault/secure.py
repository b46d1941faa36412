#!/usr/bin/env python3
"""Secret buffers - Scoped ownership and zeroization of secret bytes.

Every buffer holding a master password, a key or decrypted entry plaintext
lives in a SecretBytes. Leaving its ``with`` block wipes it, on every exit
path. Library calls that insist on immutable ``bytes`` get a copy through
``reveal()``, and that copy is wiped when the block exits.
"""

import ctypes
import platform
import sys
from contextlib import contextmanager
from typing import Iterator, Union

# Offset of ob_sval inside a PyBytesObject (getsizeof counts the trailing NUL)
_BYTES_DATA_OFFSET = sys.getsizeof(b"") - 1
_IS_CPYTHON = platform.python_implementation() == "CPython"

BytesLike = Union[bytes, bytearray, memoryview]


def wipe_bytes(data: bytes) -> None:
    """Overwrite the storage of an immutable bytes object in place.

    CPython shares the empty and single-byte objects across the interpreter,
    so those are left alone. Other implementations are skipped.
    """
    if not _IS_CPYTHON or type(data) is not bytes or len(data) < 2:
        return
    ctypes.memset(id(data) + _BYTES_DATA_OFFSET, 0, len(data))


def wipe_bytearray(buf: bytearray) -> None:
    """Overwrite a bytearray with zeros without reallocating it."""
    if buf:
        buf[:] = bytes(len(buf))


class SecretBytes:
    """A fixed-size secret buffer that is wiped when its scope exits."""

    __slots__ = ("_buf", "_wiped")

    def __init__(self, data: BytesLike = b""):
        # Allocate once at the final size; growing a bytearray can leave
        # stale copies in freed memory.
        self._buf = bytearray(len(data))
        self._buf[:] = data
        self._wiped = False

    @classmethod
    def adopt(cls, buf: bytearray) -> "SecretBytes":
        """Take ownership of ``buf`` without copying it."""
        secret = cls.__new__(cls)
        secret._buf = buf
        secret._wiped = False
        return secret

    @classmethod
    def from_text(cls, text: str) -> "SecretBytes":
        """Encode ``text`` as UTF-8 into a new secret buffer."""
        encoded = text.encode("utf-8")
        try:
            return cls(encoded)
        finally:
            wipe_bytes(encoded)

    @classmethod
    def take(cls, data: bytes) -> "SecretBytes":
        """Copy ``data`` into a secret buffer and wipe the original."""
        try:
            return cls(data)
        finally:
            wipe_bytes(data)

    def __enter__(self) -> "SecretBytes":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self):
        self.wipe()

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else f"{len(self._buf)} bytes"
        return f"<{type(self).__name__} [{state}]>"

    __str__ = __repr__

    def __eq__(self, other):
        # Secrets are compared through reveal(), never implicitly
        return NotImplemented

    __hash__ = None

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        """Zero the buffer. Safe to call more than once."""
        if getattr(self, "_wiped", True):
            return
        wipe_bytearray(self._buf)
        self._wiped = True

    def view(self) -> memoryview:
        """Read-only view of the live buffer."""
        self._check_alive()
        return memoryview(self._buf).toreadonly()

    @contextmanager
    def reveal(self) -> Iterator[bytes]:
        """Yield an immutable copy for APIs that require ``bytes``."""
        self._check_alive()
        copy = bytes(self._buf)
        try:
            yield copy
        finally:
            wipe_bytes(copy)

    def lower(self) -> "SecretBytes":
        """New secret buffer with ASCII letters lowercased."""
        self._check_alive()
        return SecretBytes.adopt(self._buf.lower())

    def contains(self, needle: bytes) -> bool:
        self._check_alive()
        return needle in self._buf

    def decode(self, encoding: str = "utf-8") -> str:
        """Decode into a ``str``. The result cannot be wiped; the caller owns it."""
        self._check_alive()
        return self._buf.decode(encoding)

    def _check_alive(self) -> None:
        if self._wiped:
            raise ValueError(f"{type(self).__name__} has already been wiped")


class Kek(SecretBytes):
    """Key-Encryption-Key derived from the master password."""

    __slots__ = ()


class VaultKey(SecretBytes):
    """Random key protecting entry payloads."""

    __slots__ = ()


def as_secret(value: Union[str, BytesLike, SecretBytes]) -> SecretBytes:
    """Return a SecretBytes owned by the caller of this function.

    A SecretBytes is passed through as-is (ownership moves with it); text and
    raw bytes are copied into a fresh buffer.
    """
    if isinstance(value, SecretBytes):
        return value
    if isinstance(value, str):
        return SecretBytes.from_text(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return SecretBytes(value)
    raise TypeError(f"expected str, bytes or SecretBytes, got {type(value).__name__}")
