"""
Address Cache module for resolved endpoint addresses.

Remembers the last address each storage hostname resolved to, so that
repeated mounts of the same endpoint do not walk DNS every time. Entries
expire after a TTL and the cache holds at most `size_limit` records,
evicting the oldest-inserted record first.

Eviction is FIFO by insertion, not least-recently-used: a cache hit does
not move an entry. Dependents rely on that ordering.
"""

import time
from pathlib import Path
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .exceptions import PersistenceError
from .file_lock import ExclusiveFileLock
from .models import CacheEntry


class AddressCache:
    """
    Persistent hostname -> address cache with TTL and capacity bounds.

    Stored as `<hostname>:<timestamp>:<address>` lines in insertion order.
    Each read-modify-write holds an exclusive lock on the cache file and
    rewrites it in place.
    """

    COMPONENT = "address_cache"

    def __init__(
        self,
        file_path: Path,
        size_limit: int = 10,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the address cache.

        Args:
            file_path: Path to the cache file (created on first use)
            size_limit: Maximum number of records kept
            ttl_seconds: Age after which a record is treated as absent
            clock: Source of the current Unix time
            logger: Optional audit logger
        """
        if size_limit < 1:
            raise ValueError(f"size_limit must be positive, got {size_limit}")

        self._file_path = file_path
        self._size_limit = size_limit
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._logger = logger
        self._lock = ExclusiveFileLock(file_path, create=True)

    @property
    def file_path(self) -> Path:
        return self._file_path

    def get(self, hostname: str) -> Optional[str]:
        """
        Look up the cached address for a hostname.

        An expired record is removed from the file as a side effect.

        Returns:
            The cached address, or None if absent or expired

        Raises:
            PersistenceError: If the cache file cannot be read or rewritten
        """
        with self._lock.acquire():
            entries = self._read()
            entry = next((e for e in entries if e.hostname == hostname), None)
            if entry is None:
                return None

            if int(self._clock()) > entry.timestamp + self._ttl_seconds:
                self._log_debug(f"Cached data for {hostname} has expired. Refreshing...")
                self._write([e for e in entries if e.hostname != hostname])
                return None

            return entry.address

    def put(self, hostname: str, address: str) -> CacheEntry:
        """
        Insert or overwrite the record for a hostname.

        The new record goes to the end of the insertion order; while the
        cache is over its limit the oldest record is dropped.

        Returns:
            The stored CacheEntry

        Raises:
            PersistenceError: If the cache file cannot be read or rewritten
        """
        new_entry = CacheEntry(
            hostname=hostname,
            timestamp=int(self._clock()),
            address=address,
        )

        with self._lock.acquire():
            entries = [e for e in self._read() if e.hostname != hostname]
            entries.append(new_entry)

            while len(entries) > self._size_limit:
                evicted = entries.pop(0)
                self._log_debug(f"Evicting {evicted.hostname} from address cache")

            self._write(entries)

        return new_entry

    def invalidate(self, hostname: str) -> bool:
        """
        Drop the record for a hostname so the next lookup queries DNS.

        Returns:
            True if a record was removed
        """
        with self._lock.acquire():
            entries = self._read()
            remaining = [e for e in entries if e.hostname != hostname]
            if len(remaining) == len(entries):
                return False
            self._write(remaining)
            return True

    def entries(self) -> list[CacheEntry]:
        """All records in insertion order, expired ones included."""
        with self._lock.acquire():
            return self._read()

    def _read(self) -> list[CacheEntry]:
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read cache file: {e}",
                details={"file_path": str(self._file_path)},
            )

        entries = []
        for line in lines:
            if not line.strip():
                continue
            entry = CacheEntry.from_line(line)
            if entry is None:
                self._log_debug(f"Ignoring malformed cache line: {line!r}")
                continue
            entries.append(entry)
        return entries

    def _write(self, entries: list[CacheEntry]) -> None:
        content = "".join(entry.to_line() + "\n" for entry in entries)
        try:
            # r+ keeps the inode other processes hold their lock on
            with open(self._file_path, "r+", encoding="utf-8") as f:
                f.write(content)
                f.truncate()
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write cache file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def _log_debug(self, message: str) -> None:
        if self._logger:
            self._logger.debug(self.COMPONENT, message)
