"""Cache module for redis-lite."""

from .keyspace import Keyspace, ReadWriteLock

__all__ = ["Keyspace", "ReadWriteLock"]
