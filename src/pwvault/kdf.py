#!/usr/bin/env python3
"""Key derivation and wrapping.

The master password is stretched with Argon2id into a Key-Encryption-Key
(KEK). The KEK's only job is to wrap the random Vault Key, which in turn
protects the entries. Changing the master password rewraps the Vault Key and
leaves every entry ciphertext untouched.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple, Union

import nacl.exceptions
import nacl.pwhash
import nacl.utils

from . import aead
from .errors import CorruptFormat, UnsupportedVersion
from .secure import Kek, SecretBytes, VaultKey, as_secret

logger = logging.getLogger(__name__)

# Constants
ALG_ARGON2ID13 = 1
KEY_SIZE = 32
SALT_SIZE = nacl.pwhash.argon2id.SALTBYTES
WRAPPED_KEY_SIZE = KEY_SIZE + aead.TAG_SIZE

_ARGON = nacl.pwhash.argon2id
MEMORY_COST_MIN = _ARGON.MEMLIMIT_MIN // 1024
MEMORY_COST_MAX = min(_ARGON.MEMLIMIT_MAX // 1024, 0xFFFFFFFF)
TIME_COST_MIN = _ARGON.OPSLIMIT_MIN
TIME_COST_MAX = min(_ARGON.OPSLIMIT_MAX, 0xFFFFFFFF)
# libsodium runs Argon2id single-lane
SUPPORTED_PARALLELISM = 1


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost settings. memory_cost is in KiB."""

    algorithm: int
    memory_cost: int
    time_cost: int
    parallelism: int = SUPPORTED_PARALLELISM

    @classmethod
    def argon2id(cls, memory_cost: int, time_cost: int) -> "KdfParams":
        return cls(ALG_ARGON2ID13, memory_cost, time_cost, SUPPORTED_PARALLELISM)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KdfParams":
        try:
            return cls(
                algorithm=int(data["algorithm"]),
                memory_cost=int(data["memory_cost"]),
                time_cost=int(data["time_cost"]),
                parallelism=int(data["parallelism"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptFormat(f"invalid KDF parameter record: {e}") from None

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @property
    def memlimit(self) -> int:
        """Memory cost in bytes, as libsodium expects it."""
        return self.memory_cost * 1024

    def validate(self) -> "KdfParams":
        """Check the parameters are ones this build can run.

        Raises:
            UnsupportedVersion: Unknown algorithm or unsupported parallelism
            CorruptFormat: Costs outside libsodium's accepted range

        """
        if self.algorithm != ALG_ARGON2ID13:
            raise UnsupportedVersion(f"unknown KDF algorithm id {self.algorithm}")
        if self.parallelism != SUPPORTED_PARALLELISM:
            raise UnsupportedVersion(
                f"KDF parallelism {self.parallelism} is not supported"
            )
        if not MEMORY_COST_MIN <= self.memory_cost <= MEMORY_COST_MAX:
            raise CorruptFormat(f"KDF memory cost {self.memory_cost} KiB out of range")
        if not TIME_COST_MIN <= self.time_cost <= TIME_COST_MAX:
            raise CorruptFormat(f"KDF time cost {self.time_cost} out of range")
        return self

    def is_weaker_than(self, other: "KdfParams") -> bool:
        """True if any cost of ``self`` is strictly below the same cost of ``other``."""
        return (
            self.memory_cost < other.memory_cost
            or self.time_cost < other.time_cost
            or self.parallelism < other.parallelism
        )

    def strongest(self, other: "KdfParams") -> "KdfParams":
        """Component-wise maximum of two parameter sets."""
        return KdfParams(
            algorithm=self.algorithm,
            memory_cost=max(self.memory_cost, other.memory_cost),
            time_cost=max(self.time_cost, other.time_cost),
            parallelism=max(self.parallelism, other.parallelism),
        )


PRESETS = {
    "interactive": KdfParams.argon2id(
        _ARGON.MEMLIMIT_INTERACTIVE // 1024, _ARGON.OPSLIMIT_INTERACTIVE
    ),
    "moderate": KdfParams.argon2id(
        _ARGON.MEMLIMIT_MODERATE // 1024, _ARGON.OPSLIMIT_MODERATE
    ),
    "sensitive": KdfParams.argon2id(
        _ARGON.MEMLIMIT_SENSITIVE // 1024, _ARGON.OPSLIMIT_SENSITIVE
    ),
    # 256 MiB, 3 passes
    "default": KdfParams.argon2id(256 * 1024, 3),
}
DEFAULT_PARAMS = PRESETS["default"]


def generate_salt() -> bytes:
    """Generate a fresh random salt."""
    return nacl.utils.random(SALT_SIZE)


def generate_vault_key() -> VaultKey:
    """Generate a new random Vault Key."""
    return VaultKey.take(nacl.utils.random(KEY_SIZE))


def derive_kek(
    password: Union[str, bytes, SecretBytes],
    salt: bytes,
    params: KdfParams,
) -> Kek:
    """Derive the KEK from the master password with Argon2id.

    The password buffer is consumed: it is wiped once derivation finishes,
    whether or not it succeeds.

    Args:
        password: Master password
        salt: SALT_SIZE random bytes from the header
        params: Validated KDF parameters

    Returns:
        The derived Kek

    """
    with as_secret(password) as secret:
        params.validate()
        if len(salt) != SALT_SIZE:
            raise CorruptFormat(f"salt must be {SALT_SIZE} bytes, got {len(salt)}")

        logger.debug(
            "Deriving KEK (argon2id, m=%d KiB, t=%d, p=%d)",
            params.memory_cost, params.time_cost, params.parallelism,
        )
        with secret.reveal() as raw_password:
            try:
                derived = nacl.pwhash.argon2id.kdf(
                    KEY_SIZE,
                    raw_password,
                    salt,
                    opslimit=params.time_cost,
                    memlimit=params.memlimit,
                )
            except (nacl.exceptions.RuntimeError, nacl.exceptions.ValueError) as e:
                raise CorruptFormat(f"key derivation rejected parameters: {e}") from None

    return Kek.take(derived)


def wrap_vault_key(
    kek: Kek,
    vault_key: VaultKey,
    associated_data: bytes,
) -> Tuple[bytes, bytes]:
    """Encrypt the Vault Key under the KEK.

    Returns:
        Tuple of (wrapped_key, nonce)

    """
    if not isinstance(kek, Kek):
        raise TypeError("wrap_vault_key requires a Kek")
    if not isinstance(vault_key, VaultKey):
        raise TypeError("wrap_vault_key can only wrap a VaultKey")

    sealed = aead.seal(kek, vault_key, associated_data)
    return sealed.ciphertext, sealed.nonce


def unwrap_vault_key(
    kek: Kek,
    wrapped_key: bytes,
    nonce: bytes,
    associated_data: bytes,
) -> VaultKey:
    """Decrypt the wrapped Vault Key.

    Raises:
        AuthenticationFailure: Wrong password or tampered header

    """
    if not isinstance(kek, Kek):
        raise TypeError("unwrap_vault_key requires a Kek")
    if len(wrapped_key) != WRAPPED_KEY_SIZE:
        raise CorruptFormat("wrapped vault key has the wrong length")

    with aead.open(kek, nonce, associated_data, wrapped_key) as plain:
        return VaultKey(plain.view())
