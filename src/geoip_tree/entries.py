"""
Flat entry sequences.

A record in the data section is handed to the decoder as a list of
entries in preorder: every map or array entry is immediately followed by
the flattened entries of its children. Map children alternate key entry,
value entry.

Scalar payload encoding (all integers big-endian):
- String: UTF-8 bytes
- Double: 8-byte IEEE-754 big-endian
- UInt16/UInt32/UInt64: unsigned, leading zero bytes dropped (0 is empty)
- Int32: up to 4 bytes; only a full 4-byte payload can be negative
- Boolean: a single byte, 0 or 1
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import List
import struct

from .value import (
    Value, Null, Bool, Int32, UInt16, UInt32, UInt64, Double, String, Array, Map,
)


class Tag(IntEnum):
    """Entry tags, numbered after the data section type codes."""
    STRING = 2
    DOUBLE = 3
    UINT16 = 5
    UINT32 = 6
    MAP = 7
    INT32 = 8
    UINT64 = 9
    ARRAY = 11
    BOOLEAN = 14


@dataclass(frozen=True)
class Entry:
    """
    One node of a flattened data tree.

    Attributes:
        tag: Type tag (a Tag value, or an unsupported raw type code)
        size: Pair count for maps, element count for arrays, payload
            length for scalars
        payload: Raw scalar bytes (empty for composites)
    """
    tag: int
    size: int = 0
    payload: bytes = b""

    @property
    def is_composite(self) -> bool:
        return self.tag in (Tag.MAP, Tag.ARRAY)


def encode_unsigned(value: int) -> bytes:
    """Encode a non-negative integer with leading zero bytes dropped."""
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def encode_int32(value: int) -> bytes:
    """Encode an Int32 payload; negatives use the full 4-byte form."""
    if value < 0:
        return struct.pack(">i", value)
    return encode_unsigned(value)


def scalar_entry(value: Value) -> Entry:
    """Build the entry for a scalar value."""
    if isinstance(value, String):
        payload = value.value.encode("utf-8")
        return Entry(Tag.STRING, len(payload), payload)
    if isinstance(value, Double):
        return Entry(Tag.DOUBLE, 8, struct.pack(">d", value.value))
    if isinstance(value, UInt16):
        payload = encode_unsigned(value.value)
        return Entry(Tag.UINT16, len(payload), payload)
    if isinstance(value, UInt32):
        payload = encode_unsigned(value.value)
        return Entry(Tag.UINT32, len(payload), payload)
    if isinstance(value, Int32):
        payload = encode_int32(value.value)
        return Entry(Tag.INT32, len(payload), payload)
    if isinstance(value, UInt64):
        payload = encode_unsigned(value.value)
        return Entry(Tag.UINT64, len(payload), payload)
    if isinstance(value, Bool):
        return Entry(Tag.BOOLEAN, 1, b"\x01" if value.value else b"\x00")
    if isinstance(value, Null):
        raise ValueError("Null has no entry representation")
    raise TypeError(f"Not a scalar value: {value!r}")


def flatten(value: Value) -> List[Entry]:
    """
    Flatten a value tree into preorder entries.

    Args:
        value: Root of the tree

    Returns:
        List of entries, decodable with decoder.decode()
    """
    entries: List[Entry] = []
    _flatten_into(value, entries)
    return entries


def _flatten_into(value: Value, entries: List[Entry]) -> None:
    """Recursively append a value's entries."""
    if isinstance(value, Map):
        entries.append(Entry(Tag.MAP, len(value.pairs)))
        for key, child in value.pairs:
            entries.append(scalar_entry(String(key)))
            _flatten_into(child, entries)
    elif isinstance(value, Array):
        entries.append(Entry(Tag.ARRAY, len(value.items)))
        for child in value.items:
            _flatten_into(child, entries)
    else:
        entries.append(scalar_entry(value))
