"""
Exception hierarchy for database access, lookups and entry decoding.

Decode errors describe which structural rule of the flattened entry
sequence was broken. The lookup facade wraps them into DataParsingError
so callers only need to handle GeoIP2Error.
"""

from typing import Optional


class GeoIP2Error(Exception):
    """Base class for all errors raised by geoip_tree."""


class DatabaseOpenError(GeoIP2Error):
    """The database file could not be opened or its metadata is invalid."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class InvalidDatabaseError(GeoIP2Error):
    """The search tree or data section is corrupt."""


class InvalidDatabaseTypeError(GeoIP2Error):
    """The database type does not match the required type."""

    def __init__(self, database_type: str, expected: str):
        super().__init__(
            f"Invalid database type {database_type!r} (requires {expected!r})"
        )
        self.database_type = database_type
        self.expected = expected


class AddressLookupError(GeoIP2Error, ValueError):
    """The address could not be parsed or cannot be looked up."""


class DataParsingError(GeoIP2Error):
    """Decoding the record for a lookup or metadata request failed."""

    def __init__(self, reason: Optional[str] = None):
        if reason:
            super().__init__(f"Failed to parse data: {reason}")
        else:
            super().__init__("Failed to parse data")
        self.reason = reason


class DecodeError(GeoIP2Error):
    """Base class for malformed entry sequences."""


class UnexpectedEndOfData(DecodeError):
    def __init__(self, cursor: int):
        super().__init__(f"Unexpected end of data at entry {cursor}")
        self.cursor = cursor


class InvalidKeyType(DecodeError):
    def __init__(self, tag: int, cursor: int):
        super().__init__(f"Invalid key type {tag} in map at entry {cursor}")
        self.tag = tag
        self.cursor = cursor


class UnknownDataType(DecodeError):
    def __init__(self, tag: int, cursor: int):
        super().__init__(f"Unknown data type: {tag} at entry {cursor}")
        self.tag = tag
        self.cursor = cursor


class TopLevelNotMap(DecodeError):
    def __init__(self, tag: int):
        super().__init__(f"Top level data is not a map (tag {tag})")
        self.tag = tag


class InvalidPayload(DecodeError):
    """A scalar entry carries a payload that does not fit its tag."""

    def __init__(self, tag: int, cursor: int, reason: str):
        super().__init__(f"Invalid payload for tag {tag} at entry {cursor}: {reason}")
        self.tag = tag
        self.cursor = cursor
        self.reason = reason


class MaxDepthExceeded(DecodeError):
    def __init__(self, cursor: int, max_depth: int):
        super().__init__(
            f"Data structure nesting exceeds {max_depth} levels at entry {cursor}"
        )
        self.cursor = cursor
        self.max_depth = max_depth
