#!/usr/bin/env python3
"""AEAD codec - XChaCha20-Poly1305 (IETF) via libsodium.

seal() draws a fresh 192-bit random nonce for every call, so nonces never
repeat under one key in practice. open() is the only integrity gate: on any
verification failure it raises AuthenticationFailure and returns nothing.
"""

from typing import NamedTuple, Optional

import nacl.bindings
import nacl.exceptions
import nacl.utils

from .errors import AuthenticationFailure, CorruptFormat
from .secure import SecretBytes

# Constants
KEY_SIZE = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_KEYBYTES
NONCE_SIZE = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
TAG_SIZE = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_ABYTES


class Sealed(NamedTuple):
    """Nonce plus ciphertext-with-tag, as stored side by side on disk."""

    nonce: bytes
    ciphertext: bytes


def new_nonce() -> bytes:
    """Generate a random nonce."""
    return nacl.utils.random(NONCE_SIZE)


def _check_key(key: SecretBytes) -> None:
    if not isinstance(key, SecretBytes):
        raise TypeError("AEAD keys must be held in a SecretBytes")
    if len(key) != KEY_SIZE:
        raise CorruptFormat(f"AEAD key must be {KEY_SIZE} bytes")


def seal_with_nonce(
    key: SecretBytes,
    nonce: bytes,
    associated_data: Optional[bytes],
    plaintext: SecretBytes,
) -> bytes:
    """Encrypt ``plaintext`` under an explicit nonce.

    Returns ciphertext followed by the 16-byte tag.
    """
    _check_key(key)
    if len(nonce) != NONCE_SIZE:
        raise CorruptFormat(f"nonce must be {NONCE_SIZE} bytes")

    with key.reveal() as raw_key, plaintext.reveal() as message:
        return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
            message, associated_data, nonce, raw_key
        )


def seal(
    key: SecretBytes,
    plaintext: SecretBytes,
    associated_data: Optional[bytes] = None,
) -> Sealed:
    """Encrypt ``plaintext`` under a fresh random nonce."""
    nonce = new_nonce()
    return Sealed(nonce, seal_with_nonce(key, nonce, associated_data, plaintext))


def open(
    key: SecretBytes,
    nonce: bytes,
    associated_data: Optional[bytes],
    ciphertext: bytes,
) -> SecretBytes:
    """Verify and decrypt ``ciphertext``.

    Returns:
        The plaintext in a SecretBytes owned by the caller

    Raises:
        AuthenticationFailure: If the tag does not verify
        CorruptFormat: If the nonce or ciphertext cannot be well formed

    """
    _check_key(key)
    if len(nonce) != NONCE_SIZE:
        raise CorruptFormat(f"nonce must be {NONCE_SIZE} bytes")
    if len(ciphertext) < TAG_SIZE:
        raise CorruptFormat("ciphertext shorter than its tag")

    with key.reveal() as raw_key:
        try:
            message = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                ciphertext, associated_data, nonce, raw_key
            )
        except nacl.exceptions.CryptoError:
            raise AuthenticationFailure() from None

    return SecretBytes.take(message)
