"""Command engine module for redis-lite."""

from .engine import CommandEngine

__all__ = ["CommandEngine"]
