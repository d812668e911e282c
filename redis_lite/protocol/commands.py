"""
Protocol Command Definitions

This module defines the supported command types and the Command structure
extracted from a decoded request value.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .values import Array, BulkString, ProtocolValue
from ..errors import InvalidCommandError


class CommandType(Enum):
    """Enumeration of supported command types."""
    PING = "PING"
    GET = "GET"
    SET = "SET"
    DEL = "DEL"

    @classmethod
    def lookup(cls, name: str) -> Optional["CommandType"]:
        """Resolve a command name case-insensitively; None if unknown."""
        try:
            return cls(name.upper())
        except ValueError:
            return None

    @property
    def is_write(self) -> bool:
        """Whether the command mutates the keyspace and must be logged."""
        return self in (CommandType.SET, CommandType.DEL)


@dataclass
class Command:
    """
    Represents a decoded request.

    Attributes:
        name: The command name exactly as sent by the client
        args: The remaining BulkString arguments
        raw: The Array value the command was extracted from
    """
    name: str
    args: List[ProtocolValue] = field(default_factory=list)
    raw: Optional[Array] = None

    @property
    def type(self) -> Optional[CommandType]:
        return CommandType.lookup(self.name)

    def to_value(self) -> Array:
        """Return the Array form of this command, as written to the log."""
        if self.raw is not None:
            return self.raw
        return Array([BulkString(self.name.encode("utf-8"))] + list(self.args))


def parse_command(value: ProtocolValue) -> Command:
    """
    Extract a Command from a decoded request value.

    A request is an Array of one or more present BulkStrings; the first
    element is the command name.

    Raises:
        InvalidCommandError: The value has any other shape
    """
    if not isinstance(value, Array):
        raise InvalidCommandError(f"expected array, got {type(value).__name__}")
    if not value.items:
        raise InvalidCommandError("empty command")
    for index, item in enumerate(value.items):
        if not isinstance(item, BulkString) or item.value is None:
            raise InvalidCommandError(f"argument {index} is not a bulk string")

    name = value.items[0].text()
    return Command(name=name, args=list(value.items[1:]), raw=value)


def command_to_value(name: str, *args: Union[str, bytes, int]) -> Array:
    """
    Build the Array request for a command from plain Python arguments.

    Examples:
        >>> command_to_value("SET", "k", "v")
        Array(items=[BulkString(value=b'SET'), BulkString(value=b'k'), BulkString(value=b'v')])
    """
    items = [BulkString(name.encode("utf-8"))]
    for arg in args:
        if isinstance(arg, bytes):
            items.append(BulkString(arg))
        else:
            items.append(BulkString(str(arg).encode("utf-8")))
    return Array(items)
