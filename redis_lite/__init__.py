"""
redis-lite: Persistent In-Memory Key-Value Store

A small single-node key-value server speaking a RESP-style protocol over
raw TCP sockets, built with Python asyncio. Accepted writes are recorded
in an append-only log which is replayed at startup.
"""

__version__ = "1.0.0"
