"""
MaxMind DB writer.

This module builds a database file from (network, record) pairs. It is
the inverse of reader.DatabaseReader and is used to produce databases
for tests and for the `build` command.

The search tree is a binary trie over address bits. Nodes are numbered
in breadth-first order starting with the root at 0. Every record is
written to the data section once; identical records share one offset.
"""

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import json
import logging
import struct
import time

from .address import IPNetwork, network_bits, parse_network
from .entries import Tag, encode_int32, encode_unsigned
from .reader import (
    DATA_SECTION_SEPARATOR_SIZE,
    METADATA_MARKER,
    TYPE_POINTER,
)
from .value import (
    Value, Null, Bool, Int32, UInt16, UInt32, UInt64, Double, String, Array, Map,
    to_value,
)

logger = logging.getLogger(__name__)


# Minimum UTF-8 length of a string written as a pointer
MIN_POINTER_STRING_SIZE = 4


@dataclass
class WriterConfig:
    """Configuration for the database writer."""

    ip_version: int = 6
    """IP version of the search tree (4 or 6)."""

    record_size: int = 28
    """Bits per search tree record (24, 28 or 32)."""

    database_type: str = "GeoIP2-City"
    """Value of the database_type metadata key."""

    languages: List[str] = field(default_factory=lambda: ["en"])
    """Locale codes listed in the metadata."""

    description: Dict[str, str] = field(default_factory=dict)
    """Description per language code."""

    use_pointers: bool = True
    """Emit repeated strings as pointers to their first occurrence."""

    build_epoch: Optional[int] = None
    """Build time in seconds since the epoch (default: time of writing)."""

    def __post_init__(self):
        if self.ip_version not in (4, 6):
            raise ValueError("ip_version must be 4 or 6")
        if self.record_size not in (24, 28, 32):
            raise ValueError("record_size must be 24, 28 or 32")
        if not self.database_type:
            raise ValueError("database_type must not be empty")
        if self.build_epoch is not None and self.build_epoch < 0:
            raise ValueError("build_epoch must be non-negative")

    @property
    def tree_bits(self) -> int:
        return 32 if self.ip_version == 4 else 128


@dataclass
class WriterStats:
    """Statistics collected while writing."""

    networks_inserted: int = 0
    node_count: int = 0
    records_written: int = 0
    pointers_written: int = 0
    data_section_size: int = 0
    file_size: int = 0


class _TrieNode:
    """Search tree node; each child is a node, a record or None."""

    __slots__ = ("children",)

    def __init__(self, left=None, right=None):
        self.children: List[Union["_TrieNode", Value, None]] = [left, right]


def _control(type_code: int, size: int) -> bytes:
    """Encode a control byte with its extended type and size bytes."""
    if type_code > 7:
        first = 0
        extended = bytes([type_code - 7])
    else:
        first = type_code << 5
        extended = b""

    if size < 29:
        return bytes([first | size]) + extended
    if size < 285:
        return bytes([first | 29]) + extended + bytes([size - 29])
    if size < 65821:
        return bytes([first | 30]) + extended + (size - 285).to_bytes(2, "big")
    if size < 65821 + (1 << 24):
        return bytes([first | 31]) + extended + (size - 65821).to_bytes(3, "big")
    raise ValueError(f"Size {size} too large to encode")


def _pointer(target: int) -> bytes:
    """Encode a pointer to a section-relative offset."""
    base = TYPE_POINTER << 5
    if target < 2048:
        return bytes([base | (target >> 8), target & 0xFF])
    if target < 526336:
        target -= 2048
        return bytes([base | 0x08 | (target >> 16)]) + (target & 0xFFFF).to_bytes(2, "big")
    if target < 134744064:
        target -= 526336
        return bytes([base | 0x10 | (target >> 24)]) + (target & 0xFFFFFF).to_bytes(3, "big")
    if target < (1 << 32):
        return bytes([base | 0x18]) + target.to_bytes(4, "big")
    raise ValueError(f"Pointer target {target} too large to encode")


class DataSectionEncoder:
    """Encodes values into one section of the file."""

    def __init__(self, use_pointers: bool = True):
        self.use_pointers = use_pointers
        self.buffer = bytearray()
        self.pointers_written = 0
        self._records: Dict[Value, int] = {}
        self._strings: Dict[str, int] = {}

    @property
    def record_count(self) -> int:
        return len(self._records)

    def add_record(self, value: Value) -> int:
        """
        Append a record unless an identical one was already written.

        Returns:
            Section-relative offset of the record
        """
        offset = self._records.get(value)
        if offset is None:
            offset = len(self.buffer)
            self.encode(value)
            self._records[value] = offset
        return offset

    def encode(self, value: Value) -> None:
        """Append the encoding of a value."""
        buffer = self.buffer
        if isinstance(value, Map):
            buffer.extend(_control(Tag.MAP, len(value.pairs)))
            for key, child in value.pairs:
                self._encode_string(key)
                self.encode(child)
        elif isinstance(value, Array):
            buffer.extend(_control(Tag.ARRAY, len(value.items)))
            for child in value.items:
                self.encode(child)
        elif isinstance(value, String):
            self._encode_string(value.value)
        elif isinstance(value, Double):
            buffer.extend(_control(Tag.DOUBLE, 8))
            buffer.extend(struct.pack(">d", value.value))
        elif isinstance(value, (UInt16, UInt32, UInt64)):
            tag = {UInt16: Tag.UINT16, UInt32: Tag.UINT32, UInt64: Tag.UINT64}[type(value)]
            payload = encode_unsigned(value.value)
            buffer.extend(_control(tag, len(payload)))
            buffer.extend(payload)
        elif isinstance(value, Int32):
            payload = encode_int32(value.value)
            buffer.extend(_control(Tag.INT32, len(payload)))
            buffer.extend(payload)
        elif isinstance(value, Bool):
            buffer.extend(_control(Tag.BOOLEAN, int(value.value)))
        elif isinstance(value, Null):
            raise ValueError("Null values cannot be stored in a database")
        else:
            raise TypeError(f"Unsupported value type {value.type_name}")

    def _encode_string(self, text: str) -> None:
        payload = text.encode("utf-8")
        if self.use_pointers and len(payload) >= MIN_POINTER_STRING_SIZE:
            previous = self._strings.get(text)
            if previous is not None:
                self.buffer.extend(_pointer(previous))
                self.pointers_written += 1
                return
            self._strings[text] = len(self.buffer)
        self.buffer.extend(_control(Tag.STRING, len(payload)))
        self.buffer.extend(payload)


class DatabaseWriter:
    """
    Builder for MaxMind DB files.

    Networks are inserted into a binary trie. Inserting a network inside
    an existing one splits it, so the more specific record wins for its
    addresses; inserting a network that covers earlier ones replaces
    them.
    """

    def __init__(self, config: Optional[WriterConfig] = None):
        self.config = config or WriterConfig()
        self.stats = WriterStats()
        self._root = _TrieNode()

    def insert(self, network: Union[str, IPNetwork], record: Any) -> None:
        """
        Insert a record for a network.

        Args:
            network: CIDR string or network object
            record: Map value or dict convertible with to_value()

        Raises:
            ValueError: Invalid network, or record is not a map
        """
        net = parse_network(network)
        value = to_value(record)
        if not isinstance(value, Map):
            raise ValueError(f"Record for {net} must be a map, got {value.type_name}")

        bits, prefix_len = network_bits(net, self.config.ip_version)
        width = self.config.tree_bits
        self.stats.networks_inserted += 1

        node = self._root
        if prefix_len == 0:
            node.children = [value, value]
            return

        for depth in range(prefix_len - 1):
            bit = (bits >> (width - 1 - depth)) & 1
            child = node.children[bit]
            if not isinstance(child, _TrieNode):
                # Push the covering record (or emptiness) down one level
                child = _TrieNode(child, child)
                node.children[bit] = child
            node = child

        bit = (bits >> (width - prefix_len)) & 1
        node.children[bit] = value

    def _number_nodes(self) -> List[_TrieNode]:
        """List nodes in breadth-first order; the index is the node number."""
        nodes: List[_TrieNode] = []
        queue = deque([self._root])
        while queue:
            node = queue.popleft()
            nodes.append(node)
            for child in node.children:
                if isinstance(child, _TrieNode):
                    queue.append(child)
        return nodes

    def _encode_node(self, left: int, right: int) -> bytes:
        """Encode one search tree node."""
        record_size = self.config.record_size
        limit = 1 << record_size
        if left >= limit or right >= limit:
            raise ValueError(
                f"Record value exceeds {record_size}-bit records; use a larger record_size"
            )
        if record_size == 24:
            return left.to_bytes(3, "big") + right.to_bytes(3, "big")
        if record_size == 28:
            middle = ((left >> 24) << 4) | (right >> 24)
            return (
                (left & 0xFFFFFF).to_bytes(3, "big")
                + bytes([middle])
                + (right & 0xFFFFFF).to_bytes(3, "big")
            )
        return left.to_bytes(4, "big") + right.to_bytes(4, "big")

    def _metadata(self, node_count: int) -> Map:
        config = self.config
        epoch = config.build_epoch if config.build_epoch is not None else int(time.time())
        return Map((
            ("binary_format_major_version", UInt16(2)),
            ("binary_format_minor_version", UInt16(0)),
            ("build_epoch", UInt64(epoch)),
            ("database_type", String(config.database_type)),
            ("description", Map(tuple(
                (lang, String(text)) for lang, text in config.description.items()
            ))),
            ("ip_version", UInt16(config.ip_version)),
            ("languages", Array(tuple(String(lang) for lang in config.languages))),
            ("node_count", UInt32(node_count)),
            ("record_size", UInt16(config.record_size)),
        ))

    def to_bytes(self) -> bytes:
        """
        Serialize the database.

        Returns:
            Complete file contents
        """
        nodes = self._number_nodes()
        node_count = len(nodes)
        node_ids = {id(node): number for number, node in enumerate(nodes)}

        data = DataSectionEncoder(use_pointers=self.config.use_pointers)
        tree = bytearray()

        for node in nodes:
            records = []
            for child in node.children:
                if child is None:
                    records.append(node_count)
                elif isinstance(child, _TrieNode):
                    records.append(node_ids[id(child)])
                else:
                    offset = data.add_record(child)
                    records.append(node_count + DATA_SECTION_SEPARATOR_SIZE + offset)
            tree.extend(self._encode_node(records[0], records[1]))

        metadata = DataSectionEncoder(use_pointers=False)
        metadata.encode(self._metadata(node_count))

        output = bytearray(tree)
        output.extend(b"\x00" * DATA_SECTION_SEPARATOR_SIZE)
        output.extend(data.buffer)
        output.extend(METADATA_MARKER)
        output.extend(metadata.buffer)

        self.stats.node_count = node_count
        self.stats.records_written = data.record_count
        self.stats.pointers_written = data.pointers_written
        self.stats.data_section_size = len(data.buffer)
        self.stats.file_size = len(output)
        return bytes(output)

    def write(self, path: Union[str, Path]) -> WriterStats:
        """Write the database to a file and return the build statistics."""
        contents = self.to_bytes()
        Path(path).write_bytes(contents)
        logger.info(
            "Wrote %s: %d networks, %d nodes, %d records, %d bytes",
            path,
            self.stats.networks_inserted,
            self.stats.node_count,
            self.stats.records_written,
            self.stats.file_size,
        )
        return self.stats


def load_networks(path: Union[str, Path]) -> List[Tuple[str, Any]]:
    """
    Load networks from a JSON file.

    The file holds one object mapping CIDR strings to records, e.g.
    {"81.2.69.0/24": {"country": {"iso_code": "GB"}}}.

    Returns:
        List of (network, record) pairs in file order
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object of network -> record")
    return list(data.items())


def build_database(
    networks: Iterable[Tuple[Union[str, IPNetwork], Any]],
    path: Union[str, Path],
    ip_version: int = 6,
    record_size: int = 28,
    database_type: str = "GeoIP2-City",
    languages: Optional[List[str]] = None,
    description: Optional[Dict[str, str]] = None,
    use_pointers: bool = True,
    build_epoch: Optional[int] = None,
) -> WriterStats:
    """
    Convenience function to build a database file.

    Args:
        networks: (network, record) pairs, inserted in order
        path: Output file path
        ip_version: IP version of the search tree
        record_size: Bits per search tree record
        database_type: database_type metadata value
        languages: Locale codes for the metadata
        description: Description per language
        use_pointers: Emit repeated strings as pointers
        build_epoch: Build time (default: now)

    Returns:
        WriterStats for the written file
    """
    config = WriterConfig(
        ip_version=ip_version,
        record_size=record_size,
        database_type=database_type,
        languages=languages if languages is not None else ["en"],
        description=description or {},
        use_pointers=use_pointers,
        build_epoch=build_epoch,
    )
    writer = DatabaseWriter(config)
    for network, record in networks:
        writer.insert(network, record)
    return writer.write(path)
