"""
Lookup facade.

GeoIP2 ties the pieces together: the reader finds a record and flattens
it into entries, the decoder turns the entries into a Map, and the
result can be rendered as JSON or text. Lookups can also be dispatched
to a thread pool; every lookup decodes its own entry list.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, List, Optional, Union
import logging
import threading

from .address import IPAddress
from .decoder import decode
from .entries import Entry
from .errors import DataParsingError, DecodeError, InvalidDatabaseTypeError
from .format import pretty_print, to_json
from .reader import MODE_MMAP, DatabaseReader
from .value import Map

logger = logging.getLogger(__name__)


class GeoIP2Result:
    """The decoded record for one lookup."""

    def __init__(self, data: Map, prefix_len: int = 0):
        """
        Args:
            data: Decoded record (empty when no record was found)
            prefix_len: Length of the network prefix that matched
        """
        self.data = data
        self.prefix_len = prefix_len

    @property
    def found(self) -> bool:
        return len(self.data) > 0

    def pretty_print(self, indent: str = "") -> str:
        """Format the record as readable text with sorted keys."""
        return pretty_print(self.data, indent)

    def to_json(self, pretty: bool = True, sort_keys: bool = False) -> str:
        try:
            return to_json(self.data, pretty=pretty, sort_keys=sort_keys)
        except ValueError as e:
            raise DataParsingError(f"Record cannot be written as JSON: {e}") from e

    def to_python(self) -> dict:
        return self.data.to_python()

    def __repr__(self) -> str:
        return f"GeoIP2Result(data={self.data!r}, prefix_len={self.prefix_len})"


def decode_entries(entries: List[Entry]) -> Map:
    """
    Decode a record's entry list for a lookup or metadata request.

    Raises:
        DataParsingError: The entries are malformed
    """
    try:
        data, _ = decode(entries)
    except DecodeError as e:
        raise DataParsingError(str(e)) from e
    return data


class GeoIP2:
    """
    Database access for address lookups.

    Usage:
        with GeoIP2("GeoLite2-City.mmdb") as db:
            result = db.lookup("81.2.69.160")
            print(result.pretty_print())
    """

    def __init__(
        self,
        database_path: Union[str, Path],
        mode: str = MODE_MMAP,
        expected_type: Optional[str] = None,
        max_workers: int = 4,
    ):
        """
        Open a database.

        Args:
            database_path: Path to the database file
            mode: Reader mode, "mmap" or "memory"
            expected_type: Substring the database_type must contain,
                e.g. "GeoIP2"; None accepts any type
            max_workers: Thread pool size for lookup_async()

        Raises:
            DatabaseOpenError: The database cannot be opened
            InvalidDatabaseTypeError: database_type does not match expected_type
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self._reader = DatabaseReader(database_path, mode=mode)
        database_type = self._reader.metadata.database_type
        if expected_type is not None and expected_type not in database_type:
            self._reader.close()
            raise InvalidDatabaseTypeError(database_type, expected_type)

        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @property
    def reader(self) -> DatabaseReader:
        return self._reader

    def lookup(self, ip: Union[str, IPAddress]) -> GeoIP2Result:
        """
        Look up an address.

        Args:
            ip: Numeric IPv4 or IPv6 address

        Returns:
            GeoIP2Result; its data is an empty map if the address has no record

        Raises:
            AddressLookupError: Invalid address for this database
            InvalidDatabaseError: The database is corrupt
            DataParsingError: The record could not be decoded
        """
        record = self._reader.find(ip)
        if not record.found:
            logger.debug("No record for %s", ip)
            return GeoIP2Result(Map(), record.prefix_len)

        entries = self._reader.entries_at(record.offset)
        logger.debug(
            "Record for %s at offset %d (/%d, %d entries)",
            ip, record.offset, record.prefix_len, len(entries),
        )
        return GeoIP2Result(decode_entries(entries), record.prefix_len)

    def lookup_async(
        self,
        ip: Union[str, IPAddress],
        callback: Optional[Callable[["Future[GeoIP2Result]"], Any]] = None,
    ) -> "Future[GeoIP2Result]":
        """
        Look up an address on the thread pool.

        Args:
            ip: Numeric IPv4 or IPv6 address
            callback: Called with the finished future

        Returns:
            Future resolving to the GeoIP2Result or raising the lookup error
        """
        future = self._get_executor().submit(self.lookup, ip)
        if callback is not None:
            future.add_done_callback(callback)
        return future

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._reader.closed:
                raise ValueError("I/O operation on closed database")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="geoip-lookup"
                )
            return self._executor

    def metadata(self) -> Map:
        """
        Get the database metadata map.

        Raises:
            DataParsingError: The metadata could not be decoded
        """
        entries = self._reader.metadata_entries()
        logger.debug("Metadata for %s: %d entries", self._reader.path, len(entries))
        return decode_entries(entries)

    def lookup_json(
        self,
        ip: Union[str, IPAddress],
        pretty: bool = True,
        sort_keys: bool = True,
    ) -> str:
        """Look up an address and return the record as JSON ("{}" if none)."""
        return self.lookup(ip).to_json(pretty=pretty, sort_keys=sort_keys)

    def close(self) -> None:
        """Wait for pending lookups and close the database."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        self._reader.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
