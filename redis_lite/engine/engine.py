"""
Command Engine Module

This module routes a decoded command to its handler and runs the handler
against the keyspace.

Supported commands:
    PING [msg ...]      -> +PONG | $<msg joined by spaces>
    GET <key>           -> $<value> | _
    SET <key> <value>   -> +OK
    DEL <key> [key ...] -> :<number of keys removed>

Handlers never raise for bad input; arity and argument errors come back
as ErrorMessage values. Dispatch performs no network or file I/O; logging
accepted writes is the caller's job.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..cache.keyspace import Keyspace
from ..protocol.commands import CommandType, parse_command
from ..protocol.values import (
    BulkString,
    ErrorMessage,
    Integer,
    Null,
    ProtocolValue,
    SimpleString,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Sequence[ProtocolValue]], ProtocolValue]


def wrong_arity(command: CommandType) -> ErrorMessage:
    return ErrorMessage(f"wrong number of arguments for '{command.value}'")


def invalid_argument(command: CommandType) -> ErrorMessage:
    return ErrorMessage(f"Invalid {command.value} argument")


def _key(arg: ProtocolValue) -> Optional[str]:
    """Return the key named by an argument, or None if it is not a key."""
    if isinstance(arg, BulkString) and arg.value is not None:
        return arg.text()
    return None


class CommandEngine:
    """
    Dispatches commands to handlers that read and mutate a Keyspace.

    The engine owns its keyspace; the same engine instance is used by
    every connection and by log replay.

    Usage:
        engine = CommandEngine(Keyspace())
        engine.dispatch("SET", [BulkString(b"k"), BulkString(b"v")])
    """

    def __init__(self, keyspace: Keyspace = None):
        self.keyspace = keyspace if keyspace is not None else Keyspace()
        self._handlers: Dict[CommandType, Handler] = {
            CommandType.PING: self._ping,
            CommandType.GET: self._get,
            CommandType.SET: self._set,
            CommandType.DEL: self._del,
        }

    def dispatch(self, name: str, args: Sequence[ProtocolValue]) -> ProtocolValue:
        """
        Run a command and return its response.

        Args:
            name: Command name, matched case-insensitively
            args: Command arguments (normally BulkStrings)

        Returns:
            The response value. Unknown commands return
            ErrorMessage("unknown command").
        """
        command = CommandType.lookup(name)
        if command is None:
            logger.debug(f"Unknown command: {name!r}")
            return ErrorMessage("unknown command")
        return self._handlers[command](list(args))

    def execute(self, value: ProtocolValue) -> ProtocolValue:
        """
        Dispatch a whole request value.

        Raises:
            InvalidCommandError: The value is not an Array of BulkStrings
        """
        command = parse_command(value)
        return self.dispatch(command.name, command.args)

    @staticmethod
    def is_write_command(name: str) -> bool:
        """Whether an accepted command with this name must be logged."""
        command = CommandType.lookup(name)
        return command is not None and command.is_write

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _ping(self, args: List[ProtocolValue]) -> ProtocolValue:
        if not args:
            return SimpleString("PONG")

        parts = []
        for arg in args:
            if not isinstance(arg, BulkString) or arg.value is None:
                return invalid_argument(CommandType.PING)
            parts.append(arg.value)
        return BulkString(b" ".join(parts))

    def _get(self, args: List[ProtocolValue]) -> ProtocolValue:
        if len(args) != 1:
            return wrong_arity(CommandType.GET)

        key = _key(args[0])
        if key is None:
            return invalid_argument(CommandType.GET)

        value = self.keyspace.get(key)
        return value if value is not None else Null()

    def _set(self, args: List[ProtocolValue]) -> ProtocolValue:
        if len(args) != 2:
            return wrong_arity(CommandType.SET)

        key = _key(args[0])
        if key is None:
            return invalid_argument(CommandType.SET)

        self.keyspace.set(key, args[1])
        return SimpleString("OK")

    def _del(self, args: List[ProtocolValue]) -> ProtocolValue:
        if not args:
            return wrong_arity(CommandType.DEL)

        keys = [_key(arg) for arg in args]
        if any(key is None for key in keys):
            return invalid_argument(CommandType.DEL)

        return Integer(self.keyspace.delete_many(keys))
