"""
Async Client for redis-lite

A small asyncio client that sends commands as Arrays of BulkStrings and
decodes one reply per command.

Usage:
    async with AsyncClient('127.0.0.1', 6379) as client:
        await client.set("key", "value")     # SimpleString('OK')
        await client.get("key")              # BulkString(b'value')
"""

import asyncio
from typing import Optional, Union

from .protocol.codec import ProtocolCodec, StreamDecoder
from .protocol.commands import command_to_value
from .protocol.values import ProtocolValue


class AsyncClient:
    """
    Helper class for talking to a redis-lite server.

    Provides a simple async context manager interface for sending
    commands and receiving decoded responses.
    """

    def __init__(self, host: str, port: int, codec: ProtocolCodec = None):
        self.host = host
        self.port = port
        self.codec = codec if codec is not None else ProtocolCodec()
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self._decoder: Optional[StreamDecoder] = None

    async def connect(self) -> None:
        """Establish connection to server."""
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        self._decoder = StreamDecoder(self.reader, self.codec)

    async def disconnect(self) -> None:
        """Close connection to server."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self.writer = None

    async def read_response(self) -> Optional[ProtocolValue]:
        """Read one reply; None if the server closed the connection."""
        return await self._decoder.decode()

    async def send_raw(self, data: bytes) -> Optional[ProtocolValue]:
        """Write raw bytes and read one reply."""
        self.writer.write(data)
        await self.writer.drain()
        return await self.read_response()

    async def execute(self, name: str, *args: Union[str, bytes, int]) -> Optional[ProtocolValue]:
        """Send a command and return the decoded reply."""
        return await self.send_raw(self.codec.encode(command_to_value(name, *args)))

    async def ping(self, *messages: Union[str, bytes]) -> Optional[ProtocolValue]:
        return await self.execute("PING", *messages)

    async def get(self, key: Union[str, bytes]) -> Optional[ProtocolValue]:
        return await self.execute("GET", key)

    async def set(self, key: Union[str, bytes], value: Union[str, bytes]) -> Optional[ProtocolValue]:
        return await self.execute("SET", key, value)

    async def delete(self, *keys: Union[str, bytes]) -> Optional[ProtocolValue]:
        return await self.execute("DEL", *keys)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
