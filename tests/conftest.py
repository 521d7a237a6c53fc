"""
Pytest configuration and fixtures.

Databases are built with the package's own writer into tmp_path.
"""

import pytest

from geoip_tree.reader import METADATA_MARKER
from geoip_tree.value import Int32, Map, String, UInt16, UInt32
from geoip_tree.writer import DataSectionEncoder, build_database


BUILD_EPOCH = 1700000000

LONDON = {
    "city": {"geoname_id": 2643743, "names": {"en": "London", "de": "London"}},
    "country": {"iso_code": "GB", "names": {"en": "United Kingdom"}},
    "location": {
        "accuracy_radius": UInt16(100),
        "latitude": 51.5142,
        "longitude": -0.0931,
    },
}

WESTMINSTER = {
    "city": {"geoname_id": 2634341, "names": {"en": "Westminster"}},
    "country": {"iso_code": "GB", "names": {"en": "United Kingdom"}},
    "location": {
        "accuracy_radius": UInt16(10),
        "latitude": 51.5,
        "longitude": -0.1333,
    },
}

STOCKHOLM = {
    "country": {"iso_code": "SE", "names": {"en": "Sweden"}},
    "traits": {"is_anycast": True, "utc_offset": Int32(-5)},
}

TOKYO = {
    "city": {"names": {"en": "Tokyo", "ja": "東京"}},
    "country": {"iso_code": "JP", "names": {"en": "Japan"}},
    "location": {"latitude": 35.6895, "longitude": 139.6917},
    "subdivisions": [{"iso_code": "13", "names": {"en": "Tokyo"}}],
}

IPV4_NETWORKS = [
    ("81.2.69.0/24", LONDON),
    ("81.2.69.160/27", WESTMINSTER),
    ("89.160.20.112/28", STOCKHOLM),
]

IPV6_NETWORKS = IPV4_NETWORKS + [
    ("2001:218::/32", TOKYO),
]


@pytest.fixture
def city_db(tmp_path):
    """Path to an IPv6 city database with IPv4 and IPv6 networks."""
    path = tmp_path / "city.mmdb"
    build_database(
        IPV6_NETWORKS,
        path,
        database_type="GeoIP2-City",
        description={"en": "Test city database"},
        build_epoch=BUILD_EPOCH,
    )
    return path


@pytest.fixture
def ipv4_db(tmp_path):
    """Path to an IPv4-only database with 24-bit records."""
    path = tmp_path / "city-v4.mmdb"
    build_database(
        IPV4_NETWORKS,
        path,
        ip_version=4,
        record_size=24,
        database_type="GeoLite2-City",
        build_epoch=BUILD_EPOCH,
    )
    return path


def metadata_bytes(**overrides) -> bytes:
    """Encode an IPv4 metadata section, marker included. None drops a key."""
    fields = {
        "node_count": UInt32(1),
        "record_size": UInt16(24),
        "ip_version": UInt16(4),
        "database_type": String("Test"),
    }
    fields.update(overrides)
    encoder = DataSectionEncoder(use_pointers=False)
    encoder.encode(Map(tuple((k, v) for k, v in fields.items() if v is not None)))
    return METADATA_MARKER + bytes(encoder.buffer)


def raw_database(path, left: int, right: int, data: bytes) -> None:
    """Write an IPv4 database with one 24-bit node and a raw data section."""
    tree = left.to_bytes(3, "big") + right.to_bytes(3, "big")
    path.write_bytes(tree + b"\x00" * 16 + data + metadata_bytes())
