"""Persistence module for redis-lite."""

from .aof import AppendOnlyLog

__all__ = ["AppendOnlyLog"]
