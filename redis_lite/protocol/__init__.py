"""Protocol module for redis-lite."""

from .codec import ProtocolCodec, StreamDecoder
from .commands import Command, CommandType, command_to_value, parse_command
from .values import (
    Array,
    BulkString,
    ErrorMessage,
    Integer,
    Null,
    ProtocolValue,
    SimpleString,
)

__all__ = [
    "Array",
    "BulkString",
    "Command",
    "CommandType",
    "ErrorMessage",
    "Integer",
    "Null",
    "ProtocolCodec",
    "ProtocolValue",
    "SimpleString",
    "StreamDecoder",
    "command_to_value",
    "parse_command",
]
