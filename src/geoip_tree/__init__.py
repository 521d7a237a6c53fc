"""
geoip-tree: MaxMind DB lookups decoded into immutable value trees.

This package reads MaxMind DB files, flattens the record for an address
into a preorder list of tagged entries and decodes that list into a
tree of Map/Array/scalar values that can be queried or rendered as JSON.
"""

__version__ = "0.1.0"

from .value import (
    Value, Null, Bool, Int32, UInt16, UInt32, UInt64, Double, String, Array, Map,
    to_value,
)
from .entries import Entry, Tag, flatten
from .decoder import decode
from .errors import (
    GeoIP2Error,
    DatabaseOpenError,
    InvalidDatabaseError,
    InvalidDatabaseTypeError,
    AddressLookupError,
    DataParsingError,
    DecodeError,
    UnexpectedEndOfData,
    InvalidKeyType,
    UnknownDataType,
    TopLevelNotMap,
    InvalidPayload,
    MaxDepthExceeded,
)
from .reader import DatabaseReader, Metadata
from .writer import DatabaseWriter, WriterConfig, build_database
from .geoip import GeoIP2, GeoIP2Result
from .format import to_json, pretty_print

__all__ = [
    "Value",
    "Null",
    "Bool",
    "Int32",
    "UInt16",
    "UInt32",
    "UInt64",
    "Double",
    "String",
    "Array",
    "Map",
    "to_value",
    "Entry",
    "Tag",
    "flatten",
    "decode",
    "GeoIP2Error",
    "DatabaseOpenError",
    "InvalidDatabaseError",
    "InvalidDatabaseTypeError",
    "AddressLookupError",
    "DataParsingError",
    "DecodeError",
    "UnexpectedEndOfData",
    "InvalidKeyType",
    "UnknownDataType",
    "TopLevelNotMap",
    "InvalidPayload",
    "MaxDepthExceeded",
    "DatabaseReader",
    "Metadata",
    "DatabaseWriter",
    "WriterConfig",
    "build_database",
    "GeoIP2",
    "GeoIP2Result",
    "to_json",
    "pretty_print",
]
