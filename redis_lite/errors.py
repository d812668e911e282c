"""
Exception hierarchy for redis-lite.

Protocol errors describe bytes that cannot be decoded into a value or a value
that is not a command. Persistence errors describe failures of the
append-only log. Command-level failures (wrong arity, unknown command) are
never raised; they are returned to the client as ErrorMessage values.
"""


class RedisLiteError(Exception):
    """Base exception for all redis-lite errors."""
    pass


class ProtocolError(RedisLiteError):
    """Raised when input cannot be decoded as a protocol value."""
    pass


class UnknownTypeError(ProtocolError):
    """Raised when a value starts with an unrecognised type prefix."""
    pass


class InvalidLengthError(ProtocolError):
    """Raised when an integer or length field is malformed or out of range."""
    pass


class UnexpectedEndError(ProtocolError):
    """
    Raised when the input ends in the middle of a value.

    Attributes:
        needed: Smallest buffer length at which retrying the decode could
            succeed, or None when unknown
    """

    def __init__(self, message: str = "", needed: int = None):
        super().__init__(message)
        self.needed = needed


class OutOfBoundsError(UnexpectedEndError):
    """Raised when a bulk string body is shorter than its declared length."""
    pass


class NestingDepthError(ProtocolError):
    """Raised when arrays are nested deeper than the configured limit."""
    pass


class InvalidCommandError(ProtocolError):
    """Raised when a well-formed value is not an Array of BulkStrings."""
    pass


class PersistenceError(RedisLiteError):
    """Raised when the append-only log cannot be opened or written."""
    pass


class ReplayError(PersistenceError):
    """Raised when the append-only log cannot be replayed at startup."""
    pass
