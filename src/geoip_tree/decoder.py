"""
Decoder for flattened entry sequences.

The decoder walks a preorder entry list with a single cursor. Each call
returns the value it decoded together with the index of the first entry
after that value's subtree, and callers continue from that index. No
subtree is ever walked twice, so decoding is linear in the entry count.
"""

from typing import Callable, Dict, List, Sequence, Tuple
import struct

from .entries import Entry, Tag
from .errors import (
    InvalidKeyType,
    InvalidPayload,
    MaxDepthExceeded,
    TopLevelNotMap,
    UnexpectedEndOfData,
    UnknownDataType,
)
from .value import (
    Value, Bool, Int32, UInt16, UInt32, UInt64, Double, String, Array, Map,
)


# Deepest map/array nesting accepted before decoding is abandoned
MAX_DEPTH = 256


def _unsigned(payload: bytes, max_size: int) -> int:
    if len(payload) > max_size:
        raise ValueError(f"{len(payload)} bytes exceeds {max_size}")
    return int.from_bytes(payload, "big")


def _decode_string(entry: Entry) -> Value:
    if len(entry.payload) != entry.size:
        raise ValueError(f"declared {entry.size} bytes, got {len(entry.payload)}")
    return String(entry.payload.decode("utf-8"))


def _decode_double(entry: Entry) -> Value:
    if len(entry.payload) != 8:
        raise ValueError(f"expected 8 bytes, got {len(entry.payload)}")
    return Double(struct.unpack(">d", entry.payload)[0])


def _decode_uint16(entry: Entry) -> Value:
    return UInt16(_unsigned(entry.payload, 2))


def _decode_uint32(entry: Entry) -> Value:
    return UInt32(_unsigned(entry.payload, 4))


def _decode_int32(entry: Entry) -> Value:
    if len(entry.payload) == 4:
        return Int32(struct.unpack(">i", entry.payload)[0])
    return Int32(_unsigned(entry.payload, 3))


def _decode_uint64(entry: Entry) -> Value:
    return UInt64(_unsigned(entry.payload, 8))


def _decode_boolean(entry: Entry) -> Value:
    if entry.payload not in (b"\x00", b"\x01"):
        raise ValueError(f"expected a single 0 or 1 byte, got {entry.payload!r}")
    return Bool(entry.payload == b"\x01")


SCALAR_DECODERS: Dict[int, Callable[[Entry], Value]] = {
    Tag.STRING: _decode_string,
    Tag.DOUBLE: _decode_double,
    Tag.UINT16: _decode_uint16,
    Tag.UINT32: _decode_uint32,
    Tag.INT32: _decode_int32,
    Tag.UINT64: _decode_uint64,
    Tag.BOOLEAN: _decode_boolean,
}


def decode(entries: Sequence[Entry], cursor: int = 0) -> Tuple[Map, int]:
    """
    Decode the map whose entry is at `cursor`.

    Args:
        entries: Preorder entry sequence
        cursor: Index of the root map entry

    Returns:
        Tuple of (decoded Map, index of the first entry after it)

    Raises:
        TopLevelNotMap: The entry at `cursor` is not a map
        DecodeError: Any other structural problem in the sequence
    """
    if cursor >= len(entries):
        raise UnexpectedEndOfData(cursor)
    root = entries[cursor]
    if root.tag != Tag.MAP:
        raise TopLevelNotMap(root.tag)
    value, cursor = _decode_value(entries, cursor, 0)
    assert isinstance(value, Map)
    return value, cursor


def _decode_value(entries: Sequence[Entry], cursor: int, depth: int) -> Tuple[Value, int]:
    """Decode any value; returns (value, next cursor)."""
    if cursor >= len(entries):
        raise UnexpectedEndOfData(cursor)
    entry = entries[cursor]

    if entry.is_composite:
        decode_composite = _decode_map if entry.tag == Tag.MAP else _decode_array
        return decode_composite(entries, cursor, depth)

    convert = SCALAR_DECODERS.get(entry.tag)
    if convert is None:
        raise UnknownDataType(entry.tag, cursor)
    try:
        value = convert(entry)
    except ValueError as e:
        raise InvalidPayload(entry.tag, cursor, str(e)) from e
    return value, cursor + 1


def _decode_array(entries: Sequence[Entry], cursor: int, depth: int) -> Tuple[Value, int]:
    if depth >= MAX_DEPTH:
        raise MaxDepthExceeded(cursor, MAX_DEPTH)
    size = entries[cursor].size
    items: List[Value] = []
    cursor += 1
    for _ in range(size):
        item, cursor = _decode_value(entries, cursor, depth + 1)
        items.append(item)
    return Array(tuple(items)), cursor


def _decode_map(entries: Sequence[Entry], cursor: int, depth: int) -> Tuple[Value, int]:
    if depth >= MAX_DEPTH:
        raise MaxDepthExceeded(cursor, MAX_DEPTH)
    size = entries[cursor].size
    # dict insertion keeps first-seen key order, assignment keeps last value
    pairs: Dict[str, Value] = {}
    cursor += 1
    for _ in range(size):
        if cursor >= len(entries):
            raise UnexpectedEndOfData(cursor)
        key_entry = entries[cursor]
        if key_entry.tag != Tag.STRING:
            raise InvalidKeyType(key_entry.tag, cursor)
        key, cursor = _decode_value(entries, cursor, depth + 1)
        value, cursor = _decode_value(entries, cursor, depth + 1)
        pairs[key.value] = value
    return Map(tuple(pairs.items())), cursor
