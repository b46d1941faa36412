#!/usr/bin/env python3
"""Bounds-checked little-endian readers and writers for the vault file."""

import struct
from typing import Tuple

from .errors import CorruptFormat

U8 = struct.Struct("<B")
U16 = struct.Struct("<H")
U32 = struct.Struct("<I")
I64 = struct.Struct("<q")


class ByteReader:
    """Sequential reader that raises CorruptFormat instead of running off the end."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, size: int, what: str = "field") -> bytes:
        if size < 0 or size > self.remaining:
            raise CorruptFormat(f"truncated {what} at offset {self.offset}")
        start = self.offset
        self.offset += size
        return self.data[start:self.offset]

    def unpack(self, fmt: struct.Struct, what: str = "field") -> Tuple:
        return fmt.unpack(self.take(fmt.size, what))

    def u8(self, what: str = "u8") -> int:
        return self.unpack(U8, what)[0]

    def u16(self, what: str = "u16") -> int:
        return self.unpack(U16, what)[0]

    def u32(self, what: str = "u32") -> int:
        return self.unpack(U32, what)[0]

    def i64(self, what: str = "i64") -> int:
        return self.unpack(I64, what)[0]

    def blob8(self, what: str = "blob") -> bytes:
        return self.take(self.u8(what), what)

    def blob16(self, what: str = "blob") -> bytes:
        return self.take(self.u16(what), what)

    def blob32(self, what: str = "blob") -> bytes:
        return self.take(self.u32(what), what)


def _blob(prefix: struct.Struct, data: bytes, what: str) -> bytes:
    limit = 1 << (8 * prefix.size)
    if len(data) >= limit:
        raise ValueError(f"{what} too long ({len(data)} bytes)")
    return prefix.pack(len(data)) + data


def blob8(data: bytes, what: str = "blob") -> bytes:
    return _blob(U8, data, what)


def blob16(data: bytes, what: str = "blob") -> bytes:
    return _blob(U16, data, what)


def blob32(data: bytes, what: str = "blob") -> bytes:
    return _blob(U32, data, what)
