#!/usr/bin/env python3
"""Vault header - Binary layout, version gate and KDF downgrade protection.

Layout (all integers little-endian):

    magic            4s   b"PWVT"
    format_version   u16
    kdf_algorithm    u8
    memory_cost      u32  (KiB)
    time_cost        u32
    parallelism      u8
    salt             u8 length + bytes
    wrap_nonce       u8 length + bytes
    wrapped_key      u16 length + bytes (key + AEAD tag)

Everything from the magic through the salt is the associated data of the
wrapped key, and the wrap nonce feeds the AEAD itself, so changing any header
byte makes the unwrap fail.
"""

import json
import logging
import struct
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

from . import aead, wire
from .errors import CorruptFormat, DowngradeRejected, UnsupportedVersion
from .kdf import SALT_SIZE, WRAPPED_KEY_SIZE, KdfParams
from .storage import atomic_write

logger = logging.getLogger(__name__)

# Constants
MAGIC = b"PWVT"
FORMAT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({FORMAT_VERSION})
STRENGTH_SUFFIX = ".kdf"

_PREFIX = struct.Struct("<4sH")
_KDF = struct.Struct("<BIIB")


@dataclass(frozen=True)
class VaultHeader:
    """Parsed vault header."""

    kdf: KdfParams
    salt: bytes
    wrap_nonce: bytes
    wrapped_key: bytes
    version: int = FORMAT_VERSION

    def associated_data(self) -> bytes:
        """Bytes authenticated alongside the wrapped Vault Key."""
        return (
            _PREFIX.pack(MAGIC, self.version)
            + _KDF.pack(
                self.kdf.algorithm,
                self.kdf.memory_cost,
                self.kdf.time_cost,
                self.kdf.parallelism,
            )
            + wire.blob8(self.salt, "salt")
        )

    def to_bytes(self) -> bytes:
        return (
            self.associated_data()
            + wire.blob8(self.wrap_nonce, "wrap nonce")
            + wire.blob16(self.wrapped_key, "wrapped key")
        )

    def rewrapped(
        self, kdf: KdfParams, salt: bytes, wrap_nonce: bytes, wrapped_key: bytes
    ) -> "VaultHeader":
        """Copy of this header with new key-wrapping fields."""
        return replace(
            self, kdf=kdf, salt=salt, wrap_nonce=wrap_nonce, wrapped_key=wrapped_key
        )

    @classmethod
    def parse(cls, data: bytes) -> Tuple["VaultHeader", int]:
        """Parse a header from the start of ``data``.

        Returns:
            Tuple of (header, offset of the first byte after the header)

        Raises:
            CorruptFormat: Bad magic, truncation or invalid field sizes
            UnsupportedVersion: A format version this build cannot read

        """
        reader = wire.ByteReader(data)
        magic, version = reader.unpack(_PREFIX, "header prefix")
        if magic != MAGIC:
            raise CorruptFormat("not a vault file (bad magic)")
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(
                f"vault format version {version} is not supported "
                f"(this build reads {sorted(SUPPORTED_VERSIONS)})"
            )

        algorithm, memory_cost, time_cost, parallelism = reader.unpack(
            _KDF, "KDF parameters"
        )
        kdf = KdfParams(algorithm, memory_cost, time_cost, parallelism).validate()

        salt = reader.blob8("salt")
        if len(salt) != SALT_SIZE:
            raise CorruptFormat(f"salt must be {SALT_SIZE} bytes, got {len(salt)}")
        wrap_nonce = reader.blob8("wrap nonce")
        if len(wrap_nonce) != aead.NONCE_SIZE:
            raise CorruptFormat("wrap nonce has the wrong length")
        wrapped_key = reader.blob16("wrapped key")
        if len(wrapped_key) != WRAPPED_KEY_SIZE:
            raise CorruptFormat("wrapped key has the wrong length")

        header = cls(
            kdf=kdf,
            salt=salt,
            wrap_nonce=wrap_nonce,
            wrapped_key=wrapped_key,
            version=version,
        )
        return header, reader.offset


# ============================================================================
# KDF strength record
# ============================================================================

def strength_record_path(vault_path: Path) -> Path:
    """Sidecar holding the strongest KDF params this vault was opened with."""
    vault_path = Path(vault_path)
    return vault_path.with_name(vault_path.name + STRENGTH_SUFFIX)


def load_strength_record(vault_path: Path) -> Optional[KdfParams]:
    """Read the strength record, or None if there is none yet.

    An unreadable record fails closed with CorruptFormat.
    """
    record_path = strength_record_path(vault_path)
    try:
        with open(record_path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        raise CorruptFormat(f"KDF strength record {record_path} is unreadable: {e}") from None

    if not isinstance(data, dict) or not isinstance(data.get("kdf"), dict):
        raise CorruptFormat(f"KDF strength record {record_path} is malformed")
    return KdfParams.from_dict(data["kdf"])


def check_downgrade(vault_path: Path, params: KdfParams) -> None:
    """Refuse ``params`` if they are weaker than the recorded strength."""
    recorded = load_strength_record(vault_path)
    if recorded is not None and params.is_weaker_than(recorded):
        logger.warning(
            "Refusing KDF downgrade for %s: m=%d t=%d p=%d < m=%d t=%d p=%d",
            vault_path,
            params.memory_cost, params.time_cost, params.parallelism,
            recorded.memory_cost, recorded.time_cost, recorded.parallelism,
        )
        raise DowngradeRejected(
            "vault key derivation settings are weaker than the last accepted "
            f"settings (memory {params.memory_cost} KiB, time {params.time_cost} "
            f"< memory {recorded.memory_cost} KiB, time {recorded.time_cost})"
        )


def record_strength(vault_path: Path, params: KdfParams, replace: bool = False) -> None:
    """Raise the recorded strength to include ``params``.

    With ``replace`` the record is rewritten to exactly ``params``, whatever
    it held before. Only a newly created vault does that.
    """
    if replace:
        strongest = params
    else:
        recorded = load_strength_record(vault_path)
        strongest = params if recorded is None else recorded.strongest(params)
        if strongest == recorded:
            return

    payload = json.dumps({"version": 1, "kdf": strongest.to_dict()}, sort_keys=True)
    atomic_write(strength_record_path(vault_path), payload.encode("utf-8"))
    logger.debug("Recorded KDF strength for %s", vault_path)
