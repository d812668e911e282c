"""
Protocol Codec Module

This module converts between raw bytes and protocol values.

- ProtocolCodec.decode(): decode exactly one value from a byte buffer
- ProtocolCodec.encode(): encode a value back to bytes
- StreamDecoder: decode values one at a time from an asyncio StreamReader
"""

import re
from asyncio import StreamReader
from typing import Callable, Dict, Optional, Tuple, Union

from .values import (
    Array,
    BulkString,
    ErrorMessage,
    Integer,
    Null,
    ProtocolValue,
    SimpleString,
)
from ..config.settings import settings
from ..errors import (
    InvalidLengthError,
    NestingDepthError,
    OutOfBoundsError,
    ProtocolError,
    UnexpectedEndError,
    UnknownTypeError,
)

CRLF = b"\r\n"

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Digits of INT64_MIN plus its sign
MAX_NUMBER_LENGTH = 20

ARRAY_PREFIX = ord("*")

_INTEGER_RE = re.compile(rb"[+-]?[0-9]+")

Buffer = Union[bytes, bytearray]
DecodeResult = Tuple[ProtocolValue, int]


class ProtocolCodec:
    """
    Encoder/decoder for the prefix-tagged wire protocol.

    Decoding dispatches on the first byte of a value:

        +  SimpleString      -  ErrorMessage     :  Integer
        $  BulkString        *  Array            _  Null

    Decoding never consumes a partial value: when the buffer ends before
    the value is complete, UnexpectedEndError is raised and the caller may
    retry once more bytes are available.

    Attributes:
        max_bulk_length: Largest accepted bulk string length
        max_array_length: Largest accepted array element count
        max_line_length: Largest accepted simple string or error line
        max_depth: Deepest accepted array nesting
    """

    def __init__(
            self,
            max_bulk_length: int = None,
            max_array_length: int = None,
            max_line_length: int = None,
            max_depth: int = None,
    ):
        self.max_bulk_length = (
            max_bulk_length if max_bulk_length is not None else settings.MAX_BULK_LENGTH
        )
        self.max_array_length = (
            max_array_length if max_array_length is not None else settings.MAX_ARRAY_LENGTH
        )
        self.max_line_length = (
            max_line_length if max_line_length is not None else settings.MAX_LINE_LENGTH
        )
        self.max_depth = max_depth if max_depth is not None else settings.MAX_NESTING_DEPTH
        self._decoders: Dict[int, Callable[[Buffer, int], DecodeResult]] = {
            ord("+"): self._decode_simple_string,
            ord("-"): self._decode_error,
            ord(":"): self._decode_integer,
            ord("$"): self._decode_bulk_string,
            ord("_"): self._decode_null,
        }

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, data: Buffer, offset: int = 0) -> DecodeResult:
        """
        Decode one value starting at ``offset``.

        Args:
            data: Buffer holding encoded bytes
            offset: Position of the value's type prefix

        Returns:
            Tuple of (value, offset just past the value)

        Raises:
            UnknownTypeError: The prefix byte is not a known type
            InvalidLengthError: An integer, length or line is malformed or
                too long
            NestingDepthError: Arrays are nested deeper than max_depth
            UnexpectedEndError: The buffer ends before the value does

        Examples:
            >>> codec = ProtocolCodec()
            >>> codec.decode(b"+OK\\r\\n")
            (SimpleString(value='OK'), 5)
            >>> codec.decode(b"$-1\\r\\n")
            (BulkString(value=None), 5)
        """
        return self._decode_value(data, offset, 0)

    def _decode_value(self, data: Buffer, offset: int, depth: int) -> DecodeResult:
        if offset >= len(data):
            raise UnexpectedEndError(f"no value at offset {offset}", needed=offset + 1)

        prefix = data[offset]
        if prefix == ARRAY_PREFIX:
            return self._decode_array(data, offset + 1, depth + 1)

        decoder = self._decoders.get(prefix)
        if decoder is None:
            raise UnknownTypeError(
                f"unknown type prefix {bytes([prefix])!r} at offset {offset}"
            )
        return decoder(data, offset + 1)

    def _read_line(self, data: Buffer, offset: int, max_length: int) -> Tuple[bytes, int]:
        limit = offset + max_length + len(CRLF)
        end = data.find(CRLF, offset, limit)
        if end == -1:
            if len(data) >= limit:
                raise InvalidLengthError(
                    f"line at offset {offset} exceeds {max_length} bytes"
                )
            raise UnexpectedEndError(
                f"unterminated line at offset {offset}", needed=len(data) + 1
            )
        return bytes(data[offset:end]), end + len(CRLF)

    def _read_number(self, data: Buffer, offset: int, kind: str) -> Tuple[int, int]:
        try:
            line, offset = self._read_line(data, offset, MAX_NUMBER_LENGTH)
        except InvalidLengthError as exc:
            raise InvalidLengthError(f"invalid {kind}: {exc}") from exc
        if not _INTEGER_RE.fullmatch(line):
            raise InvalidLengthError(f"invalid {kind}: {line!r}")
        return int(line), offset

    def _decode_simple_string(self, data: Buffer, offset: int) -> DecodeResult:
        line, offset = self._read_line(data, offset, self.max_line_length)
        return SimpleString(line.decode("utf-8", errors="surrogateescape")), offset

    def _decode_error(self, data: Buffer, offset: int) -> DecodeResult:
        line, offset = self._read_line(data, offset, self.max_line_length)
        return ErrorMessage(line.decode("utf-8", errors="surrogateescape")), offset

    def _decode_integer(self, data: Buffer, offset: int) -> DecodeResult:
        number, offset = self._read_number(data, offset, "integer")
        if not INT64_MIN <= number <= INT64_MAX:
            raise InvalidLengthError(f"integer out of 64-bit range: {number}")
        return Integer(number), offset

    def _decode_bulk_string(self, data: Buffer, offset: int) -> DecodeResult:
        length, offset = self._read_number(data, offset, "bulk string length")
        if length == -1:
            return BulkString(None), offset
        if length < 0 or length > self.max_bulk_length:
            raise InvalidLengthError(f"invalid bulk string length: {length}")

        end = offset + length
        if end + len(CRLF) > len(data):
            raise OutOfBoundsError(
                f"bulk string of {length} bytes exceeds available input",
                needed=end + len(CRLF),
            )
        if data[end:end + len(CRLF)] != CRLF:
            raise InvalidLengthError(
                f"bulk string of {length} bytes is not terminated by CRLF"
            )
        return BulkString(bytes(data[offset:end])), end + len(CRLF)

    def _decode_array(self, data: Buffer, offset: int, depth: int) -> DecodeResult:
        if depth > self.max_depth:
            raise NestingDepthError(f"arrays nested deeper than {self.max_depth}")

        count, offset = self._read_number(data, offset, "array length")
        if count == -1:
            return Array(None), offset
        if count < 0 or count > self.max_array_length:
            raise InvalidLengthError(f"invalid array length: {count}")

        items = []
        for index in range(count):
            try:
                item, offset = self._decode_value(data, offset, depth)
            except UnexpectedEndError as exc:
                raise type(exc)(f"array item {index}: {exc}", needed=exc.needed) from exc
            except NestingDepthError:
                raise
            except ProtocolError as exc:
                # Keep the error class so callers can still tell a short
                # buffer apart from malformed input.
                raise type(exc)(f"array item {index}: {exc}") from exc
            items.append(item)
        return Array(items), offset

    def _decode_null(self, data: Buffer, offset: int) -> DecodeResult:
        if offset + len(CRLF) > len(data):
            raise UnexpectedEndError(
                f"unterminated null at offset {offset}", needed=offset + len(CRLF)
            )
        if data[offset:offset + len(CRLF)] != CRLF:
            raise ProtocolError(f"null value has a body at offset {offset}")
        return Null(), offset + len(CRLF)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, value: ProtocolValue) -> bytes:
        """
        Encode a protocol value to bytes.

        Args:
            value: Any of the six protocol value types

        Returns:
            The encoded bytes; decode(encode(v)) == v

        Raises:
            ValueError: The value cannot be represented on the wire

        Examples:
            >>> codec = ProtocolCodec()
            >>> codec.encode(SimpleString("OK"))
            b'+OK\\r\\n'
            >>> codec.encode(Array([BulkString(b"GET"), BulkString(b"k")]))
            b'*2\\r\\n$3\\r\\nGET\\r\\n$1\\r\\nk\\r\\n'
        """
        parts = []
        self._encode_into(value, parts)
        return b"".join(parts)

    def _encode_into(self, value: ProtocolValue, parts: list) -> None:
        if isinstance(value, SimpleString):
            parts.append(b"+" + self._encode_line(value.value) + CRLF)
        elif isinstance(value, ErrorMessage):
            parts.append(b"-" + self._encode_line(value.value) + CRLF)
        elif isinstance(value, Integer):
            if not INT64_MIN <= value.value <= INT64_MAX:
                raise ValueError(f"integer out of 64-bit range: {value.value}")
            parts.append(b":%d" % value.value + CRLF)
        elif isinstance(value, BulkString):
            if value.value is None:
                parts.append(b"$-1" + CRLF)
            else:
                payload = bytes(value.value)
                parts.append(b"$%d" % len(payload) + CRLF)
                parts.append(payload + CRLF)
        elif isinstance(value, Array):
            if value.items is None:
                parts.append(b"*-1" + CRLF)
            else:
                parts.append(b"*%d" % len(value.items) + CRLF)
                for item in value.items:
                    self._encode_into(item, parts)
        elif isinstance(value, Null):
            parts.append(b"_" + CRLF)
        else:
            raise ValueError(f"not a protocol value: {value!r}")

    @staticmethod
    def _encode_line(text: str) -> bytes:
        if "\r" in text or "\n" in text:
            raise ValueError(f"line value may not contain CR or LF: {text!r}")
        return text.encode("utf-8", errors="surrogateescape")


class StreamDecoder:
    """
    Incremental decoder over an asyncio StreamReader.

    Bytes read past the end of one value are kept for the next call, so
    pipelined requests on one connection are decoded in order. After a
    short buffer, decoding is retried only once the buffer reaches the
    length the codec reported as needed, so a large bulk string arriving
    in many reads is decoded once rather than once per read.

    Usage:
        decoder = StreamDecoder(reader)
        while (value := await decoder.decode()) is not None:
            ...
    """

    def __init__(
            self,
            reader: StreamReader,
            codec: ProtocolCodec = None,
            read_size: int = None,
    ):
        self._reader = reader
        self._codec = codec if codec is not None else ProtocolCodec()
        self._read_size = read_size if read_size is not None else settings.READ_BUFFER_SIZE
        self._buffer = bytearray()
        self._needed = 1

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet decoded."""
        return len(self._buffer)

    async def decode(self) -> Optional[ProtocolValue]:
        """
        Decode the next value from the stream.

        Returns:
            The decoded value, or None when the stream ends cleanly
            between values.

        Raises:
            UnexpectedEndError: The stream ended in the middle of a value
            ProtocolError: The buffered bytes are not a valid value
        """
        while True:
            if len(self._buffer) >= self._needed:
                try:
                    value, consumed = self._codec.decode(self._buffer)
                except UnexpectedEndError as exc:
                    self._needed = max(exc.needed or 0, len(self._buffer) + 1)
                else:
                    del self._buffer[:consumed]
                    self._needed = 1
                    return value

            chunk = await self._reader.read(self._read_size)
            if not chunk:
                if self._buffer:
                    raise UnexpectedEndError(
                        f"stream ended with {len(self._buffer)} undecoded bytes"
                    )
                return None
            self._buffer.extend(chunk)
