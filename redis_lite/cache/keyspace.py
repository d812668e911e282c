"""
Keyspace Module

This module implements the in-memory key-value mapping shared by every
client connection.

All access goes through a reader/writer lock: any number of readers may
hold it together, but a writer holds it alone.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..protocol.values import ProtocolValue


class ReadWriteLock:
    """Allow concurrent readers while preserving single-writer semantics."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writer_waiters = 0

    @contextmanager
    def read_lock(self) -> Iterator[None]:
        with self._condition:
            # Waiting writers go first so a stream of readers cannot starve them
            while self._writer or self._writer_waiters > 0:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @contextmanager
    def write_lock(self) -> Iterator[None]:
        with self._condition:
            self._writer_waiters += 1
            try:
                while self._writer or self._readers > 0:
                    self._condition.wait()
            finally:
                self._writer_waiters -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._condition:
                self._writer = False
                self._condition.notify_all()


class Keyspace:
    """
    Thread-safe in-memory mapping of key -> protocol value.

    This class provides O(1) average-case time complexity for:
    - get: Retrieve a value by key
    - set: Insert or overwrite a key
    - delete: Remove a key

    Keys are case-sensitive text. Values are stored as the protocol value
    the client sent (normally a BulkString) and returned unchanged.

    Invariants:
        - After delete(key), get(key) returns None until the next set(key)
        - No ordering is kept among keys
    """

    def __init__(self):
        self._data: Dict[str, ProtocolValue] = {}
        self._lock = ReadWriteLock()

    def get(self, key: str) -> Optional[ProtocolValue]:
        """
        Retrieve the value for a key.

        Returns:
            The stored value, or None if the key is absent
        """
        with self._lock.read_lock():
            return self._data.get(key)

    def set(self, key: str, value: ProtocolValue) -> None:
        """Insert or overwrite the value for a key."""
        with self._lock.write_lock():
            self._data[key] = value

    def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key was present, False otherwise
        """
        with self._lock.write_lock():
            return self._data.pop(key, None) is not None

    def delete_many(self, keys: Iterable[str]) -> int:
        """
        Remove several keys under a single write lock.

        Returns:
            Number of keys actually removed. A key named twice is
            only counted once.
        """
        removed = 0
        with self._lock.write_lock():
            for key in keys:
                if self._data.pop(key, None) is not None:
                    removed += 1
        return removed

    def exists(self, key: str) -> bool:
        with self._lock.read_lock():
            return key in self._data

    def keys(self) -> List[str]:
        """Snapshot of the current keys, in no particular order."""
        with self._lock.read_lock():
            return list(self._data)

    def size(self) -> int:
        with self._lock.read_lock():
            return len(self._data)

    def clear(self) -> None:
        """Remove all keys from the keyspace."""
        with self._lock.write_lock():
            self._data.clear()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the keyspace.

        Returns:
            Dictionary containing:
            - total_keys: Number of keys stored
        """
        return {"total_keys": self.size()}
