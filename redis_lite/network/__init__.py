"""Network module for redis-lite."""

from .tcp_server import RedisLiteServer

__all__ = ["RedisLiteServer"]
