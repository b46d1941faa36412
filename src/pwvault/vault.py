#!/usr/bin/env python3
"""Vault Core - The open-vault handle.

A Vault is obtained from create_vault() or open_vault() and passed to every
operation; there is no module-level "current vault". A writable handle holds
the vault lock from open until close(), so only one process can commit at a
time. Mutations work on a copy of the entry store and only replace the
handle's state once the new image has been committed.

File image: header | entry_count u32 | entries | BLAKE2b MAC (32 bytes).
The MAC is keyed with the Vault Key and covers header and body, so removed,
reordered or altered entries are caught at open without decrypting any of
them.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import nacl.bindings
import nacl.encoding
import nacl.hash

from .entries import EntrySecret, EntryStore, EntrySummary, SecretInput
from .errors import (
    AlreadyExists,
    AuthenticationFailure,
    CorruptFormat,
    IOFailure,
    ReadOnlyVault,
    VaultError,
)
from .header import VaultHeader, check_downgrade, record_strength
from .kdf import (
    DEFAULT_PARAMS,
    KdfParams,
    derive_kek,
    generate_salt,
    generate_vault_key,
    unwrap_vault_key,
    wrap_vault_key,
)
from .secure import SecretBytes, VaultKey, as_secret
from .storage import (
    VaultLock,
    atomic_write,
    cleanup_stale_temp_files,
    ensure_private_directory,
    read_snapshot,
)

logger = logging.getLogger(__name__)

# Constants
MAC_SIZE = 32
MAC_PERSON = b"pwvault-bodymac"

PathLike = Union[str, Path]
PasswordInput = Union[str, bytes, SecretBytes]


def image_mac(vault_key: VaultKey, data: bytes) -> bytes:
    """Keyed BLAKE2b over the header and body."""
    with vault_key.reveal() as raw_key:
        return nacl.hash.blake2b(
            data,
            digest_size=MAC_SIZE,
            key=raw_key,
            person=MAC_PERSON,
            encoder=nacl.encoding.RawEncoder,
        )


def build_image(header: VaultHeader, store: EntryStore, vault_key: VaultKey) -> bytes:
    """Serialize a complete, self-consistent vault file."""
    signed = header.to_bytes() + store.to_bytes()
    return signed + image_mac(vault_key, signed)


def load_body(image: bytes, offset: int, vault_key: VaultKey) -> EntryStore:
    """Verify the image MAC, then index the entries without decrypting them."""
    body_end = len(image) - MAC_SIZE
    if body_end - offset < 4:
        raise CorruptFormat("vault body is truncated")

    expected = image_mac(vault_key, image[:body_end])
    if not nacl.bindings.sodium_memcmp(expected, image[body_end:]):
        raise AuthenticationFailure()

    store, end = EntryStore.parse(image[:body_end], offset)
    if end != body_end:
        raise CorruptFormat("unexpected bytes after the last entry")
    return store


def _record_strength_quietly(path: Path, header: VaultHeader) -> None:
    try:
        record_strength(path, header.kdf)
    except IOFailure as e:
        logger.warning("Could not update KDF strength record for %s: %s", path, e)


class Vault:
    """Handle to an open vault."""

    def __init__(
        self,
        path: Path,
        header: VaultHeader,
        store: EntryStore,
        vault_key: VaultKey,
        image: bytes,
        lock: Optional[VaultLock] = None,
    ):
        if not isinstance(vault_key, VaultKey):
            raise TypeError("a Vault is keyed by a VaultKey")
        self.path = Path(path)
        self.header = header
        self._store = store
        self._vault_key = vault_key
        self._image = image
        self._lock = lock
        self.closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        path: PathLike,
        password: PasswordInput,
        params: Optional[KdfParams] = None,
    ) -> "Vault":
        """Create a new, empty vault and return a writable handle to it.

        Raises:
            AlreadyExists: Something already lives at ``path``
            Busy: Another process holds the vault lock

        """
        path = Path(path)
        params = params or DEFAULT_PARAMS

        with as_secret(password) as secret:
            params.validate()
            ensure_private_directory(path.parent)
            lock = VaultLock(path).acquire()
            try:
                if path.exists():
                    raise AlreadyExists(f"vault already exists: {path}")

                salt = generate_salt()
                draft = VaultHeader(kdf=params, salt=salt, wrap_nonce=b"", wrapped_key=b"")
                vault_key = generate_vault_key()
                try:
                    with derive_kek(secret, salt, params) as kek:
                        wrapped, nonce = wrap_vault_key(
                            kek, vault_key, draft.associated_data()
                        )
                    header = draft.rewrapped(params, salt, nonce, wrapped)
                    store = EntryStore()
                    image = build_image(header, store, vault_key)
                    # A record left by an earlier vault at this path no longer applies
                    record_strength(path, params, replace=True)
                    atomic_write(path, image)
                except BaseException:
                    vault_key.wipe()
                    raise
            except BaseException:
                lock.release()
                raise

        logger.info("Created vault %s", path)
        return cls(path, header, store, vault_key, image, lock)

    @classmethod
    def open(
        cls,
        path: PathLike,
        password: PasswordInput,
        writable: bool = True,
    ) -> "Vault":
        """Open an existing vault.

        A writable handle takes the vault lock first and fails fast with Busy
        if it is held elsewhere. A read-only handle takes no lock; it is still
        checked against the KDF strength record but never updates it.

        Raises:
            AuthenticationFailure: Wrong password or tampered file
            CorruptFormat: Malformed or truncated file
            UnsupportedVersion: Format this build cannot read
            DowngradeRejected: KDF settings weaker than previously accepted
            Busy: Lock held by another process (writable only)
            IOFailure: File missing or unreadable

        """
        path = Path(path)
        with as_secret(password) as secret:
            lock = VaultLock(path).acquire() if writable else None
            try:
                if lock is not None:
                    cleanup_stale_temp_files(path)

                image = read_snapshot(path)
                header, offset = VaultHeader.parse(image)
                check_downgrade(path, header.kdf)

                with derive_kek(secret, header.salt, header.kdf) as kek:
                    vault_key = unwrap_vault_key(
                        kek, header.wrapped_key, header.wrap_nonce, header.associated_data()
                    )
                try:
                    store = load_body(image, offset, vault_key)
                except BaseException:
                    vault_key.wipe()
                    raise
                if lock is not None:
                    _record_strength_quietly(path, header)
            except BaseException:
                if lock is not None:
                    lock.release()
                raise

        logger.info("Opened vault %s (%d entries, writable=%s)", path, len(store), writable)
        return cls(path, header, store, vault_key, image, lock)

    @property
    def writable(self) -> bool:
        return self._lock is not None and self._lock.held

    def close(self) -> None:
        """Wipe the Vault Key and release the lock."""
        if self.closed:
            return
        self.closed = True
        self._vault_key.wipe()
        if self._lock is not None:
            self._lock.release()
        logger.debug("Closed vault %s", self.path)

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self):
        if not getattr(self, "closed", True):
            self.close()

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{len(self._store)} entries"
        return f"<Vault {self.path} [{state}]>"

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def list(self) -> List[EntrySummary]:
        """Entry ids with title and username. Nothing is decrypted."""
        self._check_open()
        return self._store.list()

    def sorted(self) -> List[EntrySummary]:
        self._check_open()
        return self._store.sorted()

    def resolve(self, selector: str) -> str:
        """Map a list index or id prefix to an entry id."""
        self._check_open()
        return self._store.resolve(selector)

    def get(self, entry_id: str) -> EntrySummary:
        self._check_open()
        return self._store.get(entry_id).summary()

    def show(self, entry_id: str) -> EntrySecret:
        """Decrypt one entry. Use the result in a ``with`` block."""
        self._check_open()
        return self._store.show(self._vault_key, entry_id)

    def search(self, query: str, deep: bool = True) -> List[str]:
        """Ids of matching entries; notes fold ASCII case only (see EntryStore.search)."""
        self._check_open()
        return self._store.search(self._vault_key, query, deep=deep)

    def export_snapshot(self) -> bytes:
        """The committed, still-encrypted file image."""
        self._check_open()
        return self._image

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(
        self,
        title: str,
        username: str,
        password: SecretInput,
        notes: SecretInput = "",
    ) -> str:
        """Add an entry and commit. Returns the new entry id."""
        store = self._begin_mutation()
        entry = store.add(self._vault_key, title, username, password, notes)
        self._commit(self.header, store)
        logger.info("Added entry %s to %s", entry.id, self.path)
        return entry.id

    def edit(
        self,
        entry_id: str,
        title: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[SecretInput] = None,
        notes: Optional[SecretInput] = None,
    ) -> None:
        """Change an entry and commit. Fields left as None are kept."""
        store = self._begin_mutation()
        store.edit(
            self._vault_key,
            entry_id,
            title=title,
            username=username,
            password=password,
            notes=notes,
        )
        self._commit(self.header, store)
        logger.info("Edited entry %s in %s", entry_id, self.path)

    def delete(self, entry_id: str) -> None:
        """Remove an entry and commit."""
        store = self._begin_mutation()
        store.delete(entry_id)
        self._commit(self.header, store)
        logger.info("Deleted entry %s from %s", entry_id, self.path)

    def change_master(
        self,
        new_password: PasswordInput,
        params: Optional[KdfParams] = None,
    ) -> None:
        """Rewrap the Vault Key under a new master password.

        A fresh salt is drawn; ``params`` defaults to the current settings
        and may not be weaker than the recorded strength. Entry ciphertexts
        are carried over untouched.
        """
        with as_secret(new_password) as secret:
            self._begin_mutation()
            params = (params or self.header.kdf).validate()
            check_downgrade(self.path, params)

            salt = generate_salt()
            draft = self.header.rewrapped(params, salt, b"", b"")
            with derive_kek(secret, salt, params) as kek:
                wrapped, nonce = wrap_vault_key(
                    kek, self._vault_key, draft.associated_data()
                )
            header = draft.rewrapped(params, salt, nonce, wrapped)
            self._commit(header, self._store)

        _record_strength_quietly(self.path, header)
        logger.info("Changed master password for %s", self.path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.closed:
            raise VaultError("vault handle is closed")

    def _begin_mutation(self) -> EntryStore:
        self._check_open()
        if not self.writable:
            raise ReadOnlyVault()
        return self._store.copy()

    def _commit(self, header: VaultHeader, store: EntryStore) -> None:
        image = build_image(header, store, self._vault_key)
        atomic_write(self.path, image)
        self.header = header
        self._store = store
        self._image = image


def create_vault(
    path: PathLike,
    password: PasswordInput,
    params: Optional[KdfParams] = None,
) -> Vault:
    """Create a new vault (``init``)."""
    return Vault.create(path, password, params)


def open_vault(path: PathLike, password: PasswordInput, writable: bool = True) -> Vault:
    """Open an existing vault."""
    return Vault.open(path, password, writable)
