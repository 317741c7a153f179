"""Custom exceptions for the AudioSocket relay."""


class AudioSocketError(Exception):
    """Base exception for all AudioSocket errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProtocolError(AudioSocketError):
    """Malformed or unexpected framing on the wire.

    Raised when a message cannot be decoded or violates the
    framing rules while a session is streaming.
    """

    pass


class IncompleteMessage(ProtocolError):
    """The transport delivered fewer bytes than the framing promised."""

    def __init__(
        self,
        message: str,
        partial: bytes = b"",
        expected: int = 0,
        eof: bool = False,
    ):
        super().__init__(
            message,
            details={"received": len(partial), "expected": expected, "eof": eof},
        )
        self.partial = partial
        self.expected = expected
        self.eof = eof


class IncompleteHeader(IncompleteMessage):
    """Fewer than 3 header bytes were available."""

    pass


class IncompleteBody(IncompleteMessage):
    """The payload ended before `length` bytes arrived."""

    pass


class ProtocolViolation(ProtocolError):
    """The first message of a connection was not an identity message."""

    pass


class PayloadTooLarge(AudioSocketError, ValueError):
    """Payload does not fit in the 16-bit length field.

    Raised before anything is written.
    """

    pass


class ConnectError(AudioSocketError):
    """Connection establishment error."""

    pass


class ConnectTimeout(ConnectError):
    """A candidate address did not accept within the connect timeout."""

    pass


class ConnectRefused(ConnectError):
    """A candidate address refused or was unreachable."""

    pass


class ConnectFailed(ConnectError):
    """Every candidate address failed.

    Not retried internally; retry policy belongs to the caller.
    """

    pass


class TransportError(AudioSocketError):
    """Underlying stream I/O error."""

    pass


class WriteFailure(TransportError):
    """Writing to the connection failed."""

    pass


class ReadFailure(TransportError):
    """Reading from the connection failed."""

    pass


class BootstrapFailed(AudioSocketError):
    """The identity exchange could not be completed."""

    pass


class AudioSourceError(AudioSocketError):
    """The outbound audio source failed to produce audio."""

    pass
