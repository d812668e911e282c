"""Append-only log (AOF) persistence.

Every accepted write command is appended to the log in its encoded wire
form. At startup the log is replayed through the command engine to rebuild
the keyspace.

File format:
    A headerless concatenation of encoded command Arrays, e.g.
    *3\\r\\n$3\\r\\nSET\\r\\n$1\\r\\nk\\r\\n$1\\r\\nv\\r\\n*2\\r\\n$3\\r\\nDEL\\r\\n...
"""

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Tuple, Union

from ..config.settings import settings
from ..engine.engine import CommandEngine
from ..errors import (
    InvalidCommandError,
    PersistenceError,
    ProtocolError,
    ReplayError,
    UnexpectedEndError,
)
from ..protocol.codec import CRLF, ProtocolCodec
from ..protocol.commands import Command, parse_command
from ..protocol.values import Array, ProtocolValue

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class AppendOnlyLog:
    """Durable ordered record of executed write commands.

    Args:
        path: Path to the AOF file
        engine: Command engine that replayed records are dispatched to
        codec: Codec used to encode and decode records
        flush_interval: Seconds between background flushes

    Invariants:
        - Records are appended in the order append() is called
        - append() and flush() are serialized by one write lock
        - replay() runs before any writer is active
        - A truncated trailing record ends replay without an error
    """

    def __init__(
            self,
            path: Union[str, Path],
            engine: CommandEngine,
            codec: ProtocolCodec = None,
            flush_interval: float = None,
    ):
        self.path = Path(path)
        self.engine = engine
        self.codec = codec if codec is not None else ProtocolCodec()
        self.flush_interval = (
            flush_interval if flush_interval is not None else settings.FLUSH_INTERVAL
        )
        self._fd = None
        self._lock = threading.Lock()
        self.records_replayed = 0
        self.records_appended = 0

    @classmethod
    def open(
            cls,
            path: Union[str, Path],
            engine: CommandEngine,
            codec: ProtocolCodec = None,
            flush_interval: float = None,
    ) -> "AppendOnlyLog":
        """Open or create the log, replay it, and make it ready for appends.

        Raises:
            PersistenceError: The file cannot be created or opened
            ReplayError: The existing log cannot be replayed
        """
        aof = cls(path, engine, codec=codec, flush_interval=flush_interval)
        aof._open_for_write()
        return aof

    def _open_for_write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"could not open AOF file {self.path}: {exc}") from exc

        count, valid_end = self._replay()
        self.records_replayed = count
        logger.info(f"Replayed {count} commands from {self.path}")

        try:
            size = self.path.stat().st_size
            if valid_end < size:
                # Drop the partial record so new records start on a boundary
                logger.warning(
                    f"Discarding {size - valid_end} bytes of partial record "
                    f"at end of {self.path}"
                )
                os.truncate(self.path, valid_end)
            self._fd = open(self.path, "ab")
        except OSError as exc:
            raise PersistenceError(f"could not open AOF file {self.path}: {exc}") from exc
        logger.debug(f"Opened AOF {self.path} at offset {valid_end}")

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    def replay(self) -> int:
        """Re-dispatch every record in the log through the engine.

        Responses are discarded. A record cut short by the end of the file
        ends replay cleanly. Records that are not commands, and commands
        the engine does not know, are skipped with a warning.

        Returns:
            Number of commands dispatched

        Raises:
            ReplayError: The file cannot be read, a record in the middle
                of the file is malformed, or a record runs past the end of
                the file while complete commands follow it
        """
        count, _ = self._replay()
        return count

    def _replay(self) -> Tuple[int, int]:
        """Replay the file; return (commands dispatched, end of last record)."""
        count = 0
        offset = 0
        needed = 1
        buffer = bytearray()
        eof = False

        with self._lock:
            try:
                with open(self.path, "rb") as f:
                    while True:
                        if buffer and (eof or len(buffer) >= needed):
                            try:
                                value, consumed = self.codec.decode(buffer)
                            except UnexpectedEndError as exc:
                                if eof:
                                    self._check_torn_tail(buffer, offset)
                                    logger.warning(
                                        f"Truncated record at offset {offset} in "
                                        f"{self.path}, ending replay"
                                    )
                                    break
                                needed = max(exc.needed or 0, len(buffer) + 1)
                            except ProtocolError as exc:
                                raise ReplayError(
                                    f"corrupt record at offset {offset} in {self.path}: {exc}"
                                ) from exc
                            else:
                                del buffer[:consumed]
                                needed = 1
                                if self._apply(value, offset):
                                    count += 1
                                offset += consumed
                                continue
                        elif eof:
                            break

                        chunk = f.read(READ_CHUNK_SIZE)
                        if chunk:
                            buffer.extend(chunk)
                        else:
                            eof = True
            except OSError as exc:
                raise ReplayError(f"could not read AOF file {self.path}: {exc}") from exc

        return count, offset

    def _check_torn_tail(self, tail: bytearray, offset: int) -> None:
        """Refuse to treat the tail as a torn write if whole commands follow it.

        A crash can only cut the last record short. A complete command after
        the record start means the record's own length field is damaged, and
        truncating there would drop every record behind it.
        """
        start = tail.find(CRLF + b"*")
        while start != -1:
            try:
                value, _ = self.codec.decode(tail, start + len(CRLF))
                parse_command(value)
            except ProtocolError:
                pass
            else:
                raise ReplayError(
                    f"corrupt record at offset {offset} in {self.path}: "
                    f"it runs past the end of the file but a complete command "
                    f"starts at offset {offset + start + len(CRLF)}"
                )
            start = tail.find(CRLF + b"*", start + 1)

    def _apply(self, value: ProtocolValue, offset: int) -> bool:
        try:
            command = parse_command(value)
        except InvalidCommandError as exc:
            logger.warning(f"Skipping non-command record at offset {offset}: {exc}")
            return False

        if command.type is None:
            logger.warning(
                f"Skipping unknown command {command.name!r} at offset {offset}"
            )
            return False

        self.engine.dispatch(command.name, command.args)
        return True

    def append(self, command: Union[Command, Array]) -> int:
        """Append one command to the end of the log.

        The bytes may still sit in the process buffer when this returns;
        flush() makes them durable.

        Returns:
            Number of bytes written

        Raises:
            PersistenceError: The log is closed or the write failed
        """
        value = command.to_value() if isinstance(command, Command) else command
        data = self.codec.encode(value)

        with self._lock:
            if self._fd is None:
                raise PersistenceError(f"AOF {self.path} is closed")
            try:
                self._fd.write(data)
            except OSError as exc:
                raise PersistenceError(f"could not append to AOF {self.path}: {exc}") from exc
            self.records_appended += 1
        return len(data)

    def flush(self) -> None:
        """Force buffered records to stable storage (fsync).

        Does nothing once the log is closed.
        """
        with self._lock:
            if self._fd is None:
                return
            try:
                self._fd.flush()
                os.fsync(self._fd.fileno())
            except OSError as exc:
                raise PersistenceError(f"could not flush AOF {self.path}: {exc}") from exc

    async def flush_periodically(self, interval: float = None) -> None:
        """Flush the log every ``interval`` seconds until cancelled.

        The fsync runs in a worker thread so the event loop keeps serving
        clients. Failures are logged and the loop carries on.
        """
        interval = interval if interval is not None else self.flush_interval
        logger.debug(f"Flushing AOF {self.path} every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.flush)
            except PersistenceError as exc:
                logger.error(f"Unable to flush AOF to disk: {exc}")

    def close(self) -> None:
        """Flush and close the log. Further appends raise PersistenceError."""
        with self._lock:
            if self._fd is None:
                return
            try:
                self._fd.flush()
                os.fsync(self._fd.fileno())
            except OSError as exc:
                raise PersistenceError(f"could not flush AOF {self.path} on close: {exc}") from exc
            finally:
                self._fd.close()
                self._fd = None
        logger.info(f"Closed AOF {self.path}")

    def get_stats(self) -> Dict[str, Any]:
        """Return counters describing the log."""
        try:
            size = self.path.stat().st_size
        except OSError:
            size = 0
        return {
            "path": str(self.path),
            "open": self.is_open,
            "size_bytes": size,
            "records_replayed": self.records_replayed,
            "records_appended": self.records_appended,
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
