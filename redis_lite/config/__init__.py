"""Configuration module for redis-lite."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
