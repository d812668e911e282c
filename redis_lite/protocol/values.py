"""
Protocol Value Definitions

This module defines the six value types carried by the wire protocol.
Each type is a small dataclass so that decoded values compare by content.

    SimpleString  +<text>\\r\\n
    ErrorMessage  -<text>\\r\\n
    Integer       :<decimal>\\r\\n
    BulkString    $<length>\\r\\n<bytes>\\r\\n      ($-1\\r\\n when absent)
    Array         *<count>\\r\\n<values...>         (*-1\\r\\n when absent)
    Null          _\\r\\n
"""

from dataclasses import dataclass
from typing import List, Optional, Union


@dataclass
class SimpleString:
    """Single-line status text, e.g. ``+OK``."""
    value: str


@dataclass
class ErrorMessage:
    """Single-line error text, e.g. ``-unknown command``."""
    value: str


@dataclass
class Integer:
    """Signed 64-bit integer."""
    value: int


@dataclass
class BulkString:
    """
    Length-prefixed, binary-safe string.

    Attributes:
        value: The payload, or None for the absent bulk string (``$-1``)
    """
    value: Optional[bytes]

    def text(self) -> str:
        """Return the payload as text (undecodable bytes are preserved)."""
        if self.value is None:
            return ""
        return self.value.decode("utf-8", errors="surrogateescape")


@dataclass
class Array:
    """
    Ordered sequence of protocol values.

    Attributes:
        items: The nested values, or None for the absent array (``*-1``)
    """
    items: Optional[List["ProtocolValue"]]


@dataclass
class Null:
    """The explicit null value (``_``)."""
    pass


ProtocolValue = Union[SimpleString, ErrorMessage, Integer, BulkString, Array, Null]
