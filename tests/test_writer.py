"""Tests for the database writer."""

import json
import struct

import pytest
from geoip_tree.reader import METADATA_MARKER
from geoip_tree.value import (
    Null,
    Bool,
    Int32,
    UInt16,
    UInt32,
    UInt64,
    Double,
    String,
    Array,
    Map,
)
from geoip_tree.writer import (
    DataSectionEncoder,
    DatabaseWriter,
    WriterConfig,
    build_database,
    load_networks,
    _pointer,
)


class TestWriterConfig:
    """Tests for WriterConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = WriterConfig()
        assert config.ip_version == 6
        assert config.record_size == 28
        assert config.database_type == "GeoIP2-City"
        assert config.languages == ["en"]
        assert config.use_pointers is True
        assert config.tree_bits == 128

    def test_ipv4_tree_bits(self):
        """Test tree width for IPv4."""
        assert WriterConfig(ip_version=4).tree_bits == 32

    @pytest.mark.parametrize("kwargs", [
        {"ip_version": 5},
        {"record_size": 16},
        {"database_type": ""},
        {"build_epoch": -1},
    ])
    def test_invalid_config(self, kwargs):
        """Test that invalid settings raise ValueError."""
        with pytest.raises(ValueError):
            WriterConfig(**kwargs)


class TestDataSectionEncoder:
    """Tests for value encoding in the data section."""

    def encode(self, value, use_pointers=False) -> bytes:
        encoder = DataSectionEncoder(use_pointers=use_pointers)
        encoder.encode(value)
        return bytes(encoder.buffer)

    def test_scalars(self):
        """Test control bytes and payloads of scalar types."""
        assert self.encode(String("abc")) == b"\x43abc"
        assert self.encode(UInt32(0)) == b"\xc0"
        assert self.encode(UInt16(300)) == b"\xa2\x01\x2c"
        assert self.encode(Double(1.0)) == b"\x68" + struct.pack(">d", 1.0)

    def test_extended_types(self):
        """Test types that need the extended type byte."""
        assert self.encode(Bool(True)) == b"\x01\x07"
        assert self.encode(Bool(False)) == b"\x00\x07"
        assert self.encode(Int32(-1)) == b"\x04\x01\xff\xff\xff\xff"
        assert self.encode(UInt64(1)) == b"\x01\x02\x01"
        assert self.encode(Array()) == b"\x00\x04"

    def test_composites(self):
        """Test map and array headers followed by their children."""
        assert self.encode(Map()) == b"\xe0"
        assert self.encode(Map((("a", UInt16(1)),))) == b"\xe1\x41a\xa1\x01"

    def test_size_extensions(self):
        """Test sizes that do not fit in the control byte."""
        assert self.encode(String("x" * 100)) == b"\x5d\x47" + b"x" * 100
        assert self.encode(String("x" * 300)) == b"\x5e\x00\x0f" + b"x" * 300

    def test_repeated_strings_become_pointers(self):
        """Test that a repeated string is written as a pointer."""
        encoder = DataSectionEncoder(use_pointers=True)
        encoder.encode(Array((String("Tokyo"), String("Tokyo"))))
        assert bytes(encoder.buffer) == b"\x02\x04\x45Tokyo\x20\x02"
        assert encoder.pointers_written == 1

    def test_short_strings_repeated(self):
        """Test that short strings are not replaced with pointers."""
        encoder = DataSectionEncoder(use_pointers=True)
        encoder.encode(Array((String("en"), String("en"))))
        assert encoder.pointers_written == 0

    def test_identical_records_share_offset(self):
        """Test that add_record() writes identical records once."""
        encoder = DataSectionEncoder()
        first = encoder.add_record(Map((("a", UInt32(1)),)))
        second = encoder.add_record(Map((("b", UInt32(2)),)))
        third = encoder.add_record(Map((("a", UInt32(1)),)))
        assert first == third == 0
        assert second > first
        assert encoder.record_count == 2

    def test_null_rejected(self):
        """Test that Null cannot be stored."""
        with pytest.raises(ValueError):
            self.encode(Map((("a", Null()),)))

    def test_pointer_sizes(self):
        """Test pointer encodings for each size class."""
        assert _pointer(5) == b"\x20\x05"
        assert _pointer(3000) == b"\x28\x03\xb8"
        assert _pointer(526336) == b"\x30\x00\x00\x00"
        assert _pointer(134744064) == b"\x38\x08\x08\x08\x00"


class TestDatabaseWriter:
    """Tests for DatabaseWriter."""

    def test_empty_database_layout(self):
        """Test the layout of a database with no networks."""
        writer = DatabaseWriter(WriterConfig(ip_version=4, record_size=24, build_epoch=0))
        data = writer.to_bytes()

        # One node whose records both mean "no data" (== node_count)
        assert data[:6] == b"\x00\x00\x01\x00\x00\x01"
        assert data[6:22] == b"\x00" * 16
        assert data[22:22 + len(METADATA_MARKER)] == METADATA_MARKER
        assert writer.stats.node_count == 1
        assert writer.stats.data_section_size == 0

    def test_default_route(self):
        """Test that a /0 network fills both root records."""
        writer = DatabaseWriter(WriterConfig(ip_version=4, record_size=24))
        writer.insert("0.0.0.0/0", {"a": 1})
        data = writer.to_bytes()
        # Data record = node_count + 16 + offset 0
        assert data[:6] == b"\x00\x00\x11\x00\x00\x11"

    def test_node_count(self):
        """Test that nodes are created only along inserted prefixes."""
        writer = DatabaseWriter(WriterConfig(ip_version=4, record_size=24))
        writer.insert("128.0.0.0/1", {"a": 1})
        writer.to_bytes()
        assert writer.stats.node_count == 1

        writer.insert("0.0.0.0/2", {"b": 2})
        writer.to_bytes()
        assert writer.stats.node_count == 2

    def test_28_bit_records(self):
        """Test the shared middle nibble of 28-bit records."""
        writer = DatabaseWriter(WriterConfig(record_size=28))
        assert writer._encode_node(0x1234567, 0x89ABCDE) == b"\x23\x45\x67\x18\x9a\xbc\xde"

    def test_record_too_large(self):
        """Test that record values must fit the record size."""
        writer = DatabaseWriter(WriterConfig(record_size=24))
        with pytest.raises(ValueError):
            writer._encode_node(1 << 24, 0)

    def test_non_map_record_rejected(self):
        """Test that records must be maps."""
        writer = DatabaseWriter()
        with pytest.raises(ValueError):
            writer.insert("1.2.3.0/24", "London")

    def test_ipv6_network_in_ipv4_database(self):
        """Test that IPv6 networks are rejected for IPv4 databases."""
        writer = DatabaseWriter(WriterConfig(ip_version=4))
        with pytest.raises(ValueError):
            writer.insert("2001:218::/32", {"a": 1})

    def test_invalid_network(self):
        """Test that malformed networks are rejected."""
        with pytest.raises(ValueError):
            DatabaseWriter().insert("not-a-network", {"a": 1})

    def test_write_stats(self, tmp_path):
        """Test the statistics returned by write()."""
        path = tmp_path / "out.mmdb"
        writer = DatabaseWriter()
        writer.insert("81.2.69.0/24", {"country": {"iso_code": "GB", "names": {"en": "United Kingdom"}}})
        writer.insert("81.2.70.0/24", {"country": {"iso_code": "GB", "names": {"en": "United Kingdom"}}})
        writer.insert("2001:218::/32", {"country": {"iso_code": "JP", "names": {"en": "Japan"}}})
        stats = writer.write(path)

        assert path.stat().st_size == stats.file_size
        assert stats.networks_inserted == 3
        assert stats.records_written == 2
        assert stats.pointers_written > 0


class TestBuildHelpers:
    """Tests for build_database() and load_networks()."""

    def test_load_networks(self, tmp_path):
        """Test loading networks from JSON in file order."""
        path = tmp_path / "networks.json"
        path.write_text(json.dumps({
            "81.2.69.0/24": {"country": {"iso_code": "GB"}},
            "2001:218::/32": {"country": {"iso_code": "JP"}},
        }))
        networks = load_networks(path)
        assert networks == [
            ("81.2.69.0/24", {"country": {"iso_code": "GB"}}),
            ("2001:218::/32", {"country": {"iso_code": "JP"}}),
        ]

    def test_load_networks_requires_object(self, tmp_path):
        """Test that a JSON array is rejected."""
        path = tmp_path / "networks.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            load_networks(path)

    def test_build_database(self, tmp_path):
        """Test the convenience builder."""
        path = tmp_path / "built.mmdb"
        stats = build_database(
            [("1.2.3.0/24", {"a": 1})], path, ip_version=4, record_size=32
        )
        assert path.exists()
        assert stats.networks_inserted == 1
        assert METADATA_MARKER in path.read_bytes()
