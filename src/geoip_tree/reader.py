"""
MaxMind DB file reader.

This module opens a database file, walks its binary search tree and
turns records in the data section into flat preorder entry lists for the
decoder.

File layout:
- Search tree: node_count nodes, each holding a left and a right record
  of record_size bits (24, 28 or 32)
- 16 zero bytes
- Data section: values in the tagged data encoding
- Metadata marker b"\\xab\\xcd\\xefMaxMind.com" followed by a map

Record values below node_count point at another node, node_count itself
means "no data", and larger values point into the data section at
offset (record - node_count - 16).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
import logging
import mmap

from .address import IPAddress, IPV4_SUBTREE_BITS, address_bits, parse_address
from .decoder import decode
from .entries import Entry, Tag
from .errors import (
    AddressLookupError,
    DatabaseOpenError,
    DecodeError,
    InvalidDatabaseError,
)
from .value import Map

logger = logging.getLogger(__name__)


METADATA_MARKER = b"\xab\xcd\xefMaxMind.com"
METADATA_SEARCH_SIZE = 128 * 1024
DATA_SECTION_SEPARATOR_SIZE = 16

# Data section type codes beyond the entry tags
TYPE_EXTENDED = 0
TYPE_POINTER = 1
TYPE_BYTES = 4
TYPE_UINT128 = 10
TYPE_DATA_CACHE_CONTAINER = 12
TYPE_END_MARKER = 13
TYPE_FLOAT = 15

# Deepest nesting followed while flattening a record
MAX_DATA_DEPTH = 256

# Fixed payload sizes, checked while reading
_FIXED_SIZES = {Tag.DOUBLE: 8, TYPE_FLOAT: 4}
_MAX_SIZES = {
    Tag.UINT16: 2,
    Tag.UINT32: 4,
    Tag.INT32: 4,
    Tag.UINT64: 8,
    TYPE_UINT128: 16,
}

MODE_MMAP = "mmap"
MODE_MEMORY = "memory"


@dataclass
class Metadata:
    """Database metadata."""

    node_count: int
    record_size: int
    ip_version: int
    database_type: str
    languages: List[str] = field(default_factory=list)
    description: Dict[str, str] = field(default_factory=dict)
    binary_format_major_version: int = 2
    binary_format_minor_version: int = 0
    build_epoch: int = 0
    raw: Map = field(default_factory=Map, repr=False)

    @property
    def node_byte_size(self) -> int:
        return self.record_size * 2 // 8

    @property
    def search_tree_size(self) -> int:
        return self.node_count * self.node_byte_size

    @classmethod
    def from_map(cls, data: Map) -> "Metadata":
        """
        Build metadata from the decoded metadata map.

        Raises:
            ValueError: A required key is missing, or a key has the wrong type
        """
        plain = data.to_python()

        def require(key: str, kind: type, default=None):
            if key not in plain:
                if default is None:
                    raise ValueError(f"metadata is missing {key!r}")
                return default
            value = plain[key]
            if not isinstance(value, kind) or isinstance(value, bool):
                raise ValueError(f"metadata {key!r} has invalid value {value!r}")
            return value

        languages = require("languages", list, [])
        if not all(isinstance(lang, str) for lang in languages):
            raise ValueError(f"metadata 'languages' has invalid value {languages!r}")
        description = require("description", dict, {})
        if not all(isinstance(text, str) for text in description.values()):
            raise ValueError(f"metadata 'description' has invalid value {description!r}")

        metadata = cls(
            node_count=require("node_count", int),
            record_size=require("record_size", int),
            ip_version=require("ip_version", int),
            database_type=require("database_type", str),
            languages=languages,
            description=description,
            binary_format_major_version=require("binary_format_major_version", int, 2),
            binary_format_minor_version=require("binary_format_minor_version", int, 0),
            build_epoch=require("build_epoch", int, 0),
            raw=data,
        )
        if metadata.record_size not in (24, 28, 32):
            raise ValueError(f"unsupported record size {metadata.record_size}")
        if metadata.ip_version not in (4, 6):
            raise ValueError(f"unsupported IP version {metadata.ip_version}")
        if metadata.node_count < 1:
            raise ValueError("node_count must be positive")
        return metadata


@dataclass(frozen=True)
class LookupRecord:
    """Result of walking the search tree for one address."""

    found: bool
    prefix_len: int
    offset: int = -1
    """Offset of the record within the data section (-1 when not found)."""


class DatabaseReader:
    """
    Reader for MaxMind DB files.

    The file is memory mapped (or read into memory) once; lookups return
    entry lists whose payloads are copied out of the file buffer, so they
    stay valid after the reader is closed.
    """

    def __init__(self, path: Union[str, Path], mode: str = MODE_MMAP):
        """
        Open a database file.

        Args:
            path: Path to the .mmdb file
            mode: MODE_MMAP to memory map the file, MODE_MEMORY to read it

        Raises:
            DatabaseOpenError: The file cannot be read or has no valid metadata
        """
        if mode not in (MODE_MMAP, MODE_MEMORY):
            raise ValueError(f"mode must be {MODE_MMAP!r} or {MODE_MEMORY!r}")

        self.path = Path(path)
        self._mmap: Optional[mmap.mmap] = None
        self._buffer: Union[bytes, mmap.mmap, None] = None

        try:
            with open(self.path, "rb") as f:
                if mode == MODE_MMAP:
                    self._mmap = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
                    self._buffer = self._mmap
                else:
                    self._buffer = f.read()
        except (OSError, ValueError) as e:
            # mmap raises ValueError for empty files
            raise DatabaseOpenError(
                f"Failed to open database {self.path}: {e}", str(self.path)
            ) from e

        try:
            self._load_metadata()
        except DatabaseOpenError:
            self.close()
            raise

        logger.debug(
            "Opened %s (%s, IPv%d, %d nodes, %d-bit records)",
            self.path,
            self.metadata.database_type,
            self.metadata.ip_version,
            self.metadata.node_count,
            self.metadata.record_size,
        )

    def _load_metadata(self) -> None:
        """Locate and decode the metadata map, then compute section offsets."""
        buffer = self._buffer
        start = max(0, len(buffer) - METADATA_SEARCH_SIZE)
        marker = buffer.rfind(METADATA_MARKER, start)
        if marker < 0:
            raise DatabaseOpenError(
                f"Invalid database {self.path}: metadata section not found",
                str(self.path),
            )
        self._metadata_start = marker + len(METADATA_MARKER)

        try:
            entries = self._flatten(
                self._metadata_start, self._metadata_start, len(buffer)
            )
            data, _ = decode(entries)
            self.metadata = Metadata.from_map(data)
        except (InvalidDatabaseError, DecodeError, ValueError) as e:
            raise DatabaseOpenError(
                f"Invalid metadata in {self.path}: {e}", str(self.path)
            ) from e

        self._node_count = self.metadata.node_count
        self._record_size = self.metadata.record_size
        self._node_byte_size = self.metadata.node_byte_size
        self._data_start = self.metadata.search_tree_size + DATA_SECTION_SEPARATOR_SIZE
        if self._data_start > marker:
            raise DatabaseOpenError(
                f"Invalid database {self.path}: search tree extends past data section",
                str(self.path),
            )
        self._data_end = marker

        self._ipv4_start = 0
        self._ipv4_start_depth = 0
        if self.metadata.ip_version == 6:
            node = 0
            depth = 0
            while depth < IPV4_SUBTREE_BITS and node < self._node_count:
                node = self._read_node(node, 0)
                depth += 1
            self._ipv4_start = node
            self._ipv4_start_depth = depth

    @property
    def closed(self) -> bool:
        return self._buffer is None

    def _check_open(self) -> None:
        if self._buffer is None:
            raise ValueError("I/O operation on closed database")

    def _read_node(self, node: int, bit: int) -> int:
        """Read the left (bit 0) or right (bit 1) record of a node."""
        buffer = self._buffer
        base = node * self._node_byte_size
        if self._record_size == 24:
            offset = base + bit * 3
            return int.from_bytes(buffer[offset:offset + 3], "big")
        if self._record_size == 28:
            middle = buffer[base + 3]
            if bit == 0:
                return ((middle & 0xF0) << 20) | int.from_bytes(buffer[base:base + 3], "big")
            return ((middle & 0x0F) << 24) | int.from_bytes(buffer[base + 4:base + 7], "big")
        offset = base + bit * 4
        return int.from_bytes(buffer[offset:offset + 4], "big")

    def find(self, address: Union[str, IPAddress]) -> LookupRecord:
        """
        Walk the search tree for an address.

        Args:
            address: Numeric IPv4 or IPv6 address

        Returns:
            LookupRecord with the data section offset when found

        Raises:
            AddressLookupError: Invalid address, or IPv6 in an IPv4 database
            InvalidDatabaseError: The search tree is corrupt
        """
        self._check_open()
        ip = parse_address(address)
        value, bit_count = address_bits(ip)

        if bit_count == 128 and self.metadata.ip_version == 4:
            raise AddressLookupError(
                f"Error looking up {ip}: IPv6 lookup in IPv4 database"
            )

        node = self._ipv4_start if bit_count == 32 else 0
        depth = 0
        while depth < bit_count and node < self._node_count:
            bit = (value >> (bit_count - 1 - depth)) & 1
            node = self._read_node(node, bit)
            depth += 1

        prefix_len = depth
        if bit_count == 32 and self.metadata.ip_version == 6:
            # Relative to the IPv4 address even inside an IPv6 tree
            prefix_len = max(0, depth + self._ipv4_start_depth - IPV4_SUBTREE_BITS)

        if node == self._node_count:
            return LookupRecord(found=False, prefix_len=prefix_len)
        if node > self._node_count:
            offset = node - self._node_count - DATA_SECTION_SEPARATOR_SIZE
            if self._data_start + offset >= self._data_end:
                raise InvalidDatabaseError(
                    f"Record for {ip} points past the data section"
                )
            return LookupRecord(found=True, prefix_len=prefix_len, offset=offset)
        raise InvalidDatabaseError(f"Invalid node in search tree for {ip}")

    def lookup_entries(self, address: Union[str, IPAddress]) -> Optional[List[Entry]]:
        """
        Get the flattened record for an address.

        Returns:
            Entry list, or None if the address has no record
        """
        record = self.find(address)
        if not record.found:
            return None
        return self.entries_at(record.offset)

    def entries_at(self, offset: int) -> List[Entry]:
        """Flatten the value stored at a data section offset."""
        self._check_open()
        return self._flatten(
            self._data_start + offset, self._data_start, self._data_end
        )

    def metadata_entries(self) -> List[Entry]:
        """Flatten the metadata map."""
        self._check_open()
        return self._flatten(
            self._metadata_start, self._metadata_start, len(self._buffer)
        )

    def _flatten(self, offset: int, base: int, end: int) -> List[Entry]:
        """
        Flatten the value at an absolute offset.

        Args:
            offset: Absolute offset of the value
            base: Absolute offset that pointers are relative to
            end: Absolute offset where the section ends
        """
        entries: List[Entry] = []
        _SectionWalker(self._buffer, base, end).collect(offset, entries, 0)
        return entries

    def close(self) -> None:
        """Release the file mapping. Safe to call more than once."""
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        self._buffer = None

    def __del__(self):
        """Cleanup on garbage collection."""
        if getattr(self, "_buffer", None) is not None:
            self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class _SectionWalker:
    """Reads tagged values from one section of the file into entries."""

    def __init__(self, buffer, base: int, end: int):
        self.buffer = buffer
        self.base = base
        self.end = end

    def _read(self, offset: int, size: int) -> bytes:
        if offset < self.base or offset + size > self.end:
            raise InvalidDatabaseError(
                f"Data at offset {offset - self.base} runs past the end of the section"
            )
        return bytes(self.buffer[offset:offset + size])

    def _read_control(self, offset: int) -> Tuple[int, int, int, int]:
        """
        Read a control byte and its extensions.

        Returns:
            Tuple of (type, size, control byte, offset after the header)
        """
        ctrl = self._read(offset, 1)[0]
        offset += 1
        type_code = ctrl >> 5
        if type_code == TYPE_POINTER:
            return type_code, 0, ctrl, offset
        if type_code == TYPE_EXTENDED:
            type_code = 7 + self._read(offset, 1)[0]
            offset += 1
            if type_code < 8:
                raise InvalidDatabaseError(
                    f"Invalid extended type {type_code} at offset {offset - self.base}"
                )

        size = ctrl & 0x1F
        if size == 29:
            size = 29 + self._read(offset, 1)[0]
            offset += 1
        elif size == 30:
            size = 285 + int.from_bytes(self._read(offset, 2), "big")
            offset += 2
        elif size == 31:
            size = 65821 + int.from_bytes(self._read(offset, 3), "big")
            offset += 3
        return type_code, size, ctrl, offset

    def _read_pointer(self, ctrl: int, offset: int) -> Tuple[int, int]:
        """Returns (absolute target offset, offset after the pointer)."""
        pointer_size = ((ctrl >> 3) & 0x3) + 1
        raw = self._read(offset, pointer_size)
        high = ctrl & 0x7
        if pointer_size == 1:
            target = (high << 8) | raw[0]
        elif pointer_size == 2:
            target = ((high << 16) | int.from_bytes(raw, "big")) + 2048
        elif pointer_size == 3:
            target = ((high << 24) | int.from_bytes(raw, "big")) + 526336
        else:
            target = int.from_bytes(raw, "big")
        return self.base + target, offset + pointer_size

    def collect(self, offset: int, entries: List[Entry], depth: int) -> int:
        """
        Append the entries for the value at `offset`.

        Returns:
            Absolute offset immediately after the value
        """
        if depth > MAX_DATA_DEPTH:
            raise InvalidDatabaseError(
                f"Data structure nesting exceeds {MAX_DATA_DEPTH} levels"
            )

        type_code, size, ctrl, offset = self._read_control(offset)

        if type_code == TYPE_POINTER:
            target, offset = self._read_pointer(ctrl, offset)
            target_type = self._read(target, 1)[0] >> 5
            if target_type == TYPE_POINTER:
                raise InvalidDatabaseError(
                    f"Pointer at offset {offset - self.base} points to another pointer"
                )
            self.collect(target, entries, depth)
            return offset

        if type_code == Tag.MAP:
            entries.append(Entry(Tag.MAP, size))
            for _ in range(size):
                offset = self.collect(offset, entries, depth + 1)
                offset = self.collect(offset, entries, depth + 1)
            return offset

        if type_code == Tag.ARRAY:
            entries.append(Entry(Tag.ARRAY, size))
            for _ in range(size):
                offset = self.collect(offset, entries, depth + 1)
            return offset

        if type_code == Tag.BOOLEAN:
            if size > 1:
                raise InvalidDatabaseError(f"Invalid boolean size {size}")
            # The value lives in the size field
            entries.append(Entry(Tag.BOOLEAN, 1, bytes([size])))
            return offset

        if type_code in (TYPE_DATA_CACHE_CONTAINER, TYPE_END_MARKER) or type_code > TYPE_FLOAT:
            raise InvalidDatabaseError(
                f"Invalid data type {type_code} at offset {offset - self.base}"
            )

        expected = _FIXED_SIZES.get(type_code)
        if expected is not None and size != expected:
            raise InvalidDatabaseError(
                f"Invalid size {size} for data type {type_code}, expected {expected}"
            )
        limit = _MAX_SIZES.get(type_code)
        if limit is not None and size > limit:
            raise InvalidDatabaseError(
                f"Invalid size {size} for data type {type_code}, maximum {limit}"
            )

        entries.append(Entry(type_code, size, self._read(offset, size)))
        return offset + size
