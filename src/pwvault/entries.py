#!/usr/bin/env python3
"""Entry Store - Indexed vault entries with per-entry authenticated encryption.

Title and username are kept in clear so entries can be listed and searched
without decrypting anything. Password and notes form the secret payload,
sealed under the Vault Key with a fresh nonce on every write. The entry's
id, title, username and timestamps are the payload's associated data, so
editing any of them on disk breaks the tag.

Nothing is decrypted on load. show() decrypts exactly one entry.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional, Tuple, Union

from . import aead, wire
from .errors import AmbiguousSelector, CorruptFormat, NotFound
from .header import FORMAT_VERSION, MAGIC
from .secure import SecretBytes, VaultKey, as_secret

logger = logging.getLogger(__name__)

# Constants
PAYLOAD_VERSION = 1
MIN_PREFIX_LENGTH = 4
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SecretInput = Union[str, bytes, bytearray, SecretBytes]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_micros(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(microseconds=1)


def from_micros(value: int) -> datetime:
    try:
        return EPOCH + timedelta(microseconds=value)
    except OverflowError:
        raise CorruptFormat(f"timestamp {value} out of range") from None


@dataclass(frozen=True)
class EntrySummary:
    """What list() returns: metadata only, never secrets."""

    id: str
    title: str
    username: str
    created: datetime
    modified: datetime


@dataclass(frozen=True)
class VaultEntry:
    """One stored entry. The payload stays encrypted."""

    id: str
    title: str
    username: str
    nonce: bytes
    ciphertext: bytes
    created: datetime
    modified: datetime

    def associated_data(self) -> bytes:
        """Context bound to the payload ciphertext."""
        return (
            MAGIC
            + wire.U16.pack(FORMAT_VERSION)
            + wire.blob8(self.id.encode("ascii"), "entry id")
            + wire.blob16(self.title.encode("utf-8"), "title")
            + wire.blob16(self.username.encode("utf-8"), "username")
            + wire.I64.pack(to_micros(self.created))
            + wire.I64.pack(to_micros(self.modified))
        )

    def summary(self) -> EntrySummary:
        return EntrySummary(
            id=self.id,
            title=self.title,
            username=self.username,
            created=self.created,
            modified=self.modified,
        )

    def to_bytes(self) -> bytes:
        return (
            wire.blob8(self.id.encode("ascii"), "entry id")
            + wire.blob16(self.title.encode("utf-8"), "title")
            + wire.blob16(self.username.encode("utf-8"), "username")
            + wire.blob8(self.nonce, "entry nonce")
            + wire.blob32(self.ciphertext, "entry ciphertext")
            + wire.I64.pack(to_micros(self.created))
            + wire.I64.pack(to_micros(self.modified))
        )

    @classmethod
    def read(cls, reader: wire.ByteReader) -> "VaultEntry":
        try:
            entry_id = reader.blob8("entry id").decode("ascii")
            title = reader.blob16("title").decode("utf-8")
            username = reader.blob16("username").decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptFormat(f"entry text is not valid: {e}") from None
        nonce = reader.blob8("entry nonce")
        if len(nonce) != aead.NONCE_SIZE:
            raise CorruptFormat(f"entry {entry_id} has a bad nonce length")
        ciphertext = reader.blob32("entry ciphertext")
        if len(ciphertext) < aead.TAG_SIZE:
            raise CorruptFormat(f"entry {entry_id} ciphertext is truncated")
        created = from_micros(reader.i64("created"))
        modified = from_micros(reader.i64("modified"))
        return cls(entry_id, title, username, nonce, ciphertext, created, modified)


class EntrySecret:
    """Decrypted password and notes of one entry.

    Use it as a context manager; both buffers are wiped when the block exits.
    """

    __slots__ = ("password", "notes")

    def __init__(self, password: SecretBytes, notes: SecretBytes):
        self.password = password
        self.notes = notes

    def __enter__(self) -> "EntrySecret":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "<EntrySecret [redacted]>"

    def wipe(self) -> None:
        self.password.wipe()
        self.notes.wipe()

    def notes_contain(self, needle: bytes) -> bool:
        """ASCII case-insensitive substring test over the notes."""
        with self.notes.lower() as folded:
            return folded.contains(needle.lower())

    def encode(self) -> SecretBytes:
        """Serialize into a single payload buffer.

        Layout: version u8, password (u32 length + bytes), notes (u32 length + bytes).
        """
        size = 1 + 4 + len(self.password) + 4 + len(self.notes)
        buf = bytearray(size)
        payload = SecretBytes.adopt(buf)
        offset = 0
        wire.U8.pack_into(buf, offset, PAYLOAD_VERSION)
        offset += 1
        for part in (self.password, self.notes):
            wire.U32.pack_into(buf, offset, len(part))
            offset += 4
            buf[offset:offset + len(part)] = part.view()
            offset += len(part)
        return payload

    @classmethod
    def decode(cls, payload: SecretBytes) -> "EntrySecret":
        """Split a decrypted payload buffer. ``payload`` is left for the caller to wipe."""
        reader = wire.ByteReader(payload.view())
        version = reader.u8("payload version")
        if version != PAYLOAD_VERSION:
            raise CorruptFormat(f"unknown entry payload version {version}")
        password = SecretBytes(reader.blob32("password"))
        try:
            notes = SecretBytes(reader.blob32("notes"))
        except CorruptFormat:
            password.wipe()
            raise
        if reader.remaining:
            password.wipe()
            notes.wipe()
            raise CorruptFormat("trailing bytes after entry payload")
        return cls(password, notes)

    @classmethod
    def build(cls, password: SecretInput, notes: SecretInput = "") -> "EntrySecret":
        """Make an EntrySecret holding private copies of the given values."""
        return cls(_private_copy(password), _private_copy(notes))


def _private_copy(value: SecretInput) -> SecretBytes:
    """Copy caller-owned input; the caller keeps ownership of its own buffer."""
    if isinstance(value, SecretBytes):
        return SecretBytes(value.view())
    return as_secret(value)


def _require_vault_key(key: VaultKey) -> None:
    if not isinstance(key, VaultKey):
        raise TypeError("entry payloads are encrypted with the VaultKey only")


def _seal_entry(vault_key: VaultKey, entry: VaultEntry, secret: EntrySecret) -> VaultEntry:
    """Return ``entry`` with its payload freshly sealed from ``secret``."""
    with secret.encode() as payload:
        sealed = aead.seal(vault_key, payload, entry.associated_data())
    return replace(entry, nonce=sealed.nonce, ciphertext=sealed.ciphertext)


class EntryStore:
    """Ordered entries with an id -> position index."""

    def __init__(self, entries: Tuple[VaultEntry, ...] = ()):
        self._entries: List[VaultEntry] = []
        self._index: Dict[str, int] = {}
        for entry in entries:
            if entry.id in self._index:
                raise CorruptFormat(f"duplicate entry id {entry.id}")
            self._index[entry.id] = len(self._entries)
            self._entries.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[VaultEntry]:
        return iter(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._index

    def copy(self) -> "EntryStore":
        """Independent store with the same (immutable) entries."""
        return EntryStore(tuple(self._entries))

    def get(self, entry_id: str) -> VaultEntry:
        position = self._index.get(entry_id)
        if position is None:
            raise NotFound(f"entry not found: {entry_id}")
        return self._entries[position]

    def list(self) -> List[EntrySummary]:
        """Entry metadata in storage order, no decryption."""
        return [entry.summary() for entry in self._entries]

    def sorted(self) -> List[EntrySummary]:
        """Entry metadata ordered by title (case-insensitive), then id."""
        return sorted(self.list(), key=lambda s: (s.title.casefold(), s.id))

    def resolve(self, selector: str) -> str:
        """Turn a 1-based list index or an id prefix into an entry id.

        Raises:
            NotFound: Index out of range, prefix too short or no match
            AmbiguousSelector: Prefix matches several entries

        """
        selector = selector.strip().lower()
        if selector in self._index:
            return selector

        ordered = self.sorted()
        if selector.isdigit():
            position = int(selector)
            if not 1 <= position <= len(ordered):
                raise NotFound(f"index {position} out of range 1..{len(ordered)}")
            return ordered[position - 1].id

        if len(selector) < MIN_PREFIX_LENGTH:
            raise NotFound(f"id prefix too short (minimum is {MIN_PREFIX_LENGTH})")
        matches = [s.id for s in ordered if s.id.startswith(selector)]
        if not matches:
            raise NotFound(f"no entry matches {selector}")
        if len(matches) > 1:
            raise AmbiguousSelector(f"id prefix {selector} matches {len(matches)} entries")
        return matches[0]

    def new_id(self) -> str:
        """Random id that is not used by any entry in this store."""
        entry_id = uuid.uuid4().hex
        while entry_id in self._index:
            entry_id = uuid.uuid4().hex
        return entry_id

    def add(
        self,
        vault_key: VaultKey,
        title: str,
        username: str,
        password: SecretInput,
        notes: SecretInput = "",
        now: Optional[datetime] = None,
    ) -> VaultEntry:
        """Encrypt and append a new entry."""
        _require_vault_key(vault_key)
        now = now or utcnow()
        draft = VaultEntry(
            id=self.new_id(),
            title=title,
            username=username,
            nonce=b"",
            ciphertext=b"",
            created=now,
            modified=now,
        )
        with EntrySecret.build(password, notes) as secret:
            entry = _seal_entry(vault_key, draft, secret)

        self._index[entry.id] = len(self._entries)
        self._entries.append(entry)
        logger.debug("Added entry %s", entry.id)
        return entry

    def show(self, vault_key: VaultKey, entry_id: str) -> EntrySecret:
        """Decrypt one entry's payload.

        Raises:
            NotFound: Unknown id
            AuthenticationFailure: Ciphertext, tag or bound metadata was altered

        """
        _require_vault_key(vault_key)
        entry = self.get(entry_id)
        with aead.open(
            vault_key, entry.nonce, entry.associated_data(), entry.ciphertext
        ) as payload:
            return EntrySecret.decode(payload)

    def edit(
        self,
        vault_key: VaultKey,
        entry_id: str,
        title: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[SecretInput] = None,
        notes: Optional[SecretInput] = None,
        now: Optional[datetime] = None,
    ) -> VaultEntry:
        """Change fields of an entry and re-seal it under a fresh nonce.

        Fields left as None keep their current value.
        """
        current = self.get(entry_id)
        with self.show(vault_key, entry_id) as old:
            new_password = old.password if password is None else password
            new_notes = old.notes if notes is None else notes
            with EntrySecret.build(new_password, new_notes) as secret:
                draft = replace(
                    current,
                    title=current.title if title is None else title,
                    username=current.username if username is None else username,
                    modified=now or utcnow(),
                )
                entry = _seal_entry(vault_key, draft, secret)

        self._entries[self._index[entry_id]] = entry
        logger.debug("Edited entry %s", entry_id)
        return entry

    def delete(self, entry_id: str) -> VaultEntry:
        """Remove an entry by id."""
        entry = self.get(entry_id)
        del self._entries[self._index[entry_id]]
        self._index = {e.id: i for i, e in enumerate(self._entries)}
        logger.debug("Deleted entry %s", entry_id)
        return entry

    def search(self, vault_key: VaultKey, query: str, deep: bool = True) -> List[str]:
        """Ids of entries matching ``query`` case-insensitively.

        Title and username are checked first. With ``deep``, entries that do
        not already match are decrypted one at a time and their notes
        scanned; each payload is wiped before the next one is opened.

        Titles and usernames are compared with full Unicode case folding.
        Notes are compared as UTF-8 bytes with ASCII case folding only, so
        that no str copy of a decrypted payload is made: "NOTES" finds
        "notes", but "ÉTÉ" does not find "été".
        """
        needle = query.casefold()
        raw_needle = query.encode("utf-8")
        matches = []
        decrypted = 0

        for entry in self._entries:
            if needle in entry.title.casefold() or needle in entry.username.casefold():
                matches.append(entry.id)
                continue
            if not deep:
                continue
            decrypted += 1
            with self.show(vault_key, entry.id) as secret:
                if secret.notes_contain(raw_needle):
                    matches.append(entry.id)

        logger.debug("Search matched %d entries (%d decrypted)", len(matches), decrypted)
        return matches

    def to_bytes(self) -> bytes:
        """Serialize the body: entry count then each record."""
        return wire.U32.pack(len(self._entries)) + b"".join(
            entry.to_bytes() for entry in self._entries
        )

    @classmethod
    def parse(cls, data: bytes, offset: int = 0) -> Tuple["EntryStore", int]:
        """Parse a body starting at ``offset``.

        Returns:
            Tuple of (store, offset after the last entry)

        """
        reader = wire.ByteReader(data, offset)
        count = reader.u32("entry count")
        entries = tuple(VaultEntry.read(reader) for _ in range(count))
        return cls(entries), reader.offset
