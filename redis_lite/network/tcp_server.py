"""
Async TCP Server Module

This module implements the asynchronous TCP server for redis-lite.

Each client connection runs in its own coroutine:
    read bytes -> decode value -> dispatch -> append to AOF -> write response

Key asyncio concepts used:
- asyncio.start_server(): Create a TCP server
- StreamReader.read(): Read raw bytes from the client (see StreamDecoder)
- StreamWriter.write() / drain(): Send data to the client
- A background task flushes the append-only log once per interval
"""

import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from typing import Optional, Set

from ..config.settings import settings
from ..engine.engine import CommandEngine
from ..errors import InvalidCommandError, PersistenceError, ProtocolError
from ..persistence.aof import AppendOnlyLog
from ..protocol.codec import ProtocolCodec, StreamDecoder
from ..protocol.commands import parse_command
from ..protocol.values import ErrorMessage, ProtocolValue

logger = logging.getLogger(__name__)


class RedisLiteServer:
    """
    Asynchronous TCP server for the redis-lite service.

    This server handles multiple concurrent clients using asyncio.
    Each client connection is handled in a separate coroutine, and every
    connection shares the same CommandEngine and AppendOnlyLog.

    Features:
    - Persistent connections (multiple, pipelined commands per connection)
    - Accepted write commands are appended to the AOF before responding
    - Periodic background flush of the AOF
    - Framing errors close the offending connection; the server keeps running

    Usage:
        engine = CommandEngine()
        aof = AppendOnlyLog.open("/tmp/redis-lite.aof", engine)
        server = RedisLiteServer(host='0.0.0.0', port=6379, engine=engine, aof=aof)
        await server.start()  # Runs forever

    Attributes:
        host: Server bind address (e.g., '0.0.0.0')
        port: Server port number (e.g., 6379)
        engine: The CommandEngine shared by all connections
        aof: The AppendOnlyLog accepted writes go to (None disables persistence)
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            engine: CommandEngine = None,
            aof: AppendOnlyLog = None,
            codec: ProtocolCodec = None,
            flush_interval: float = None,
    ):
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.engine = engine if engine is not None else CommandEngine()
        self.aof = aof
        self.codec = codec if codec is not None else ProtocolCodec()
        self.flush_interval = (
            flush_interval if flush_interval is not None else settings.FLUSH_INTERVAL
        )

        # Server state
        self._server: Optional[asyncio.Server] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._connections: Set[asyncio.Task] = set()
        self._running = False
        self.ready = asyncio.Event()
        self._connection_count = 0
        self._total_commands = 0
        self._append_failures = 0

    async def handle_client(
            self,
            reader: StreamReader,
            writer: StreamWriter
    ) -> None:
        """
        Handle a single client connection.

        Reads values until the client disconnects. A value that decodes
        but is not a command gets an error reply and the loop continues;
        a framing error gets an error reply and closes the connection,
        since the position of the next value in the stream is unknown.
        """
        addr = writer.get_extra_info('peername')
        task = asyncio.current_task()
        self._connections.add(task)
        self._connection_count += 1
        logger.debug(f"Client connected: {addr}")

        decoder = StreamDecoder(reader, self.codec)
        try:
            while True:
                try:
                    value = await decoder.decode()
                except ProtocolError as exc:
                    logger.debug(f"Protocol error from {addr}: {exc}")
                    await self._send(writer, ErrorMessage(f"ERR protocol error: {exc}"))
                    break

                if value is None:
                    logger.debug(f"Client disconnected: {addr}")
                    break

                response = self.process(value)
                await self._send(writer, response)

        except (ConnectionResetError, BrokenPipeError):
            logger.debug(f"Connection reset by client: {addr}")
        except Exception as exc:  # Log unexpected errors but keep server alive
            logger.exception(f"Error handling client {addr}: {exc}")
        finally:
            self._connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug(f"Error closing connection {addr}: {exc}")

    def process(self, value: ProtocolValue) -> ProtocolValue:
        """
        Execute one decoded request and return the response value.

        Write commands that succeed are appended to the AOF. The append
        follows dispatch with no await in between, so the log order matches
        the order in which writes were applied to the keyspace.
        """
        try:
            command = parse_command(value)
        except InvalidCommandError as exc:
            return ErrorMessage(f"ERR invalid command: {exc}")

        self._total_commands += 1
        response = self.engine.dispatch(command.name, command.args)

        if (
                self.aof is not None
                and self.engine.is_write_command(command.name)
                and not isinstance(response, ErrorMessage)
        ):
            try:
                self.aof.append(command)
            except PersistenceError as exc:
                # The keyspace already holds the write; only durability degrades
                self._append_failures += 1
                logger.error(f"AOF write failed: {exc}")

        return response

    async def _send(self, writer: StreamWriter, value: ProtocolValue) -> None:
        writer.write(self.codec.encode(value))
        await writer.drain()

    async def start(self) -> None:
        """
        Start the server and begin accepting connections.

        This method creates the asyncio server, starts the background AOF
        flush and runs forever (or until cancelled).

        Example:
            server = RedisLiteServer(port=6379)
            asyncio.run(server.start())
        """
        if self._running:
            return

        self._server = await asyncio.start_server(
            self.handle_client,
            self.host,
            self.port,
        )
        self._running = True

        if self.aof is not None:
            self._flush_task = asyncio.create_task(
                self.aof.flush_periodically(self.flush_interval)
            )

        addrs = ', '.join(str(sock.getsockname()) for sock in self._server.sockets or [])
        logger.info(f"Serving on {addrs}")
        self.ready.set()

        try:
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            # Expected during shutdown/fixture cleanup
            logger.debug("Server start cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """
        Stop the server gracefully.

        Closes the listening socket, then cancels every client connection
        and waits for it to finish, then cancels the background flush.
        Handlers only await between commands, so no accepted write is lost
        half-way. The AOF itself is left open; its owner closes it once
        this returns, after which no connection can append to it.
        """
        if self._server is not None:
            self._server.close()

        connections = list(self._connections)
        for task in connections:
            task.cancel()
        if connections:
            logger.info(f"Closing {len(connections)} client connection(s)")
            await asyncio.gather(*connections, return_exceptions=True)

        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        if self._server is None:
            return

        try:
            await self._server.wait_closed()
        finally:
            self._server = None
            self._running = False
            self.ready.clear()

    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._running

    def get_stats(self) -> dict:
        """
        Get server statistics.

        Returns:
            Dictionary with server stats including connection counts,
            command counts, AOF stats and keyspace statistics.
        """
        return {
            "running": self._running,
            "host": self.host,
            "port": self.port,
            "total_connections": self._connection_count,
            "total_commands": self._total_commands,
            "aof_append_failures": self._append_failures,
            "aof_stats": self.aof.get_stats() if self.aof is not None else None,
            "keyspace_stats": self.engine.keyspace.get_stats(),
        }

