"""
redis-lite Configuration Settings

This module contains the configuration defaults for the redis-lite server.
Every value can be overridden through the environment or, per component,
through constructor arguments.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Server configuration settings."""

    # Network settings
    HOST: str = os.environ.get("REDIS_LITE_HOST", "0.0.0.0")
    PORT: int = int(os.environ.get("REDIS_LITE_PORT", "6379"))
    READ_BUFFER_SIZE: int = 4096

    # Persistence settings
    AOF_PATH: str = os.environ.get("REDIS_LITE_AOF_PATH", "/tmp/redis-lite.aof")
    FLUSH_INTERVAL: float = float(os.environ.get("REDIS_LITE_FLUSH_INTERVAL", "1.0"))

    # Protocol limits
    MAX_BULK_LENGTH: int = 512 * 1024 * 1024
    MAX_ARRAY_LENGTH: int = 1024 * 1024
    MAX_LINE_LENGTH: int = 64 * 1024
    MAX_NESTING_DEPTH: int = 128

    # Logging settings
    DEBUG: bool = os.environ.get("REDIS_LITE_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("REDIS_LITE_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
