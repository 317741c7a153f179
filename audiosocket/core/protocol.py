"""AudioSocket wire protocol.

Every message is a 3-byte header followed by an optional payload::

    byte 0     kind
    bytes 1-2  payload length (uint16, big-endian)
    bytes 3..  payload, exactly `length` bytes

Audio payloads are signed linear 16-bit little-endian mono samples at 8kHz.
"""

import asyncio
import struct
import uuid
from dataclasses import dataclass
from enum import IntEnum, IntFlag

from audiosocket.utils.exceptions import (
    IncompleteBody,
    IncompleteHeader,
    PayloadTooLarge,
    ProtocolViolation,
)

HEADER = struct.Struct(">BH")
HEADER_SIZE = HEADER.size  # 3
MAX_PAYLOAD_SIZE = 0xFFFF
IDENTITY_SIZE = 16


class Kind(IntEnum):
    """Message type indicator."""

    HANGUP = 0x00
    ID = 0x01
    SILENCE = 0x02
    DTMF = 0x03
    SLIN = 0x10
    ERROR = 0xFF

    @classmethod
    def classify(cls, value: int) -> "Kind":
        """Map a raw kind byte to a Kind, unknown values count as ERROR."""
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR


SIGNAL_KINDS = frozenset({Kind.SILENCE, Kind.DTMF})


class ErrorCode(IntFlag):
    """Bit flags carried by ERROR messages.

    The byte is forwarded as-is; bits outside the named ones survive.
    """

    NONE = 0x00
    AST_HANGUP = 0x01
    AST_FRAME_FORWARDING = 0x02
    AST_MEMORY = 0x04
    UNKNOWN = 0xFF


@dataclass(frozen=True)
class Message:
    """A single decoded AudioSocket message."""

    raw_kind: int
    payload: bytes = b""

    @property
    def kind(self) -> Kind:
        return Kind.classify(self.raw_kind)

    @property
    def content_length(self) -> int:
        return len(self.payload)

    @property
    def is_signal(self) -> bool:
        return self.kind in SIGNAL_KINDS

    @property
    def error_code(self) -> ErrorCode:
        """Error code of an ERROR message.

        Non-error messages report NONE. An ERROR message without a
        payload reports UNKNOWN.
        """
        if self.kind is not Kind.ERROR:
            return ErrorCode.NONE
        if not self.payload:
            return ErrorCode.UNKNOWN
        return ErrorCode(self.payload[0])

    @property
    def identity(self) -> uuid.UUID:
        """Call identity carried by an ID message."""
        if self.kind is not Kind.ID:
            raise ProtocolViolation(
                f"expected identity message, got kind 0x{self.raw_kind:02x}",
                details={"kind": self.raw_kind},
            )
        if len(self.payload) != IDENTITY_SIZE:
            raise ProtocolViolation(
                f"identity payload must be {IDENTITY_SIZE} bytes, got {len(self.payload)}",
                details={"length": len(self.payload)},
            )
        return uuid.UUID(bytes=self.payload)

    def to_bytes(self) -> bytes:
        return encode_message(self.raw_kind, self.payload)


def encode_message(kind: int, payload: bytes = b"") -> bytes:
    """Frame a payload with its header.

    Raises:
        PayloadTooLarge: if the payload does not fit the 16-bit length field
    """
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise PayloadTooLarge(
            f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD_SIZE}",
            details={"length": len(payload), "kind": int(kind)},
        )
    return HEADER.pack(kind, len(payload)) + bytes(payload)


def encode_hangup() -> bytes:
    return encode_message(Kind.HANGUP)


def identity_bytes(identity: bytes | uuid.UUID) -> bytes:
    """Normalize a call identity to its 16 raw bytes."""
    if isinstance(identity, uuid.UUID):
        return identity.bytes
    raw = bytes(identity)
    if len(raw) != IDENTITY_SIZE:
        raise ValueError(f"identity must be {IDENTITY_SIZE} bytes, got {len(raw)}")
    return raw


def encode_identity(identity: bytes | uuid.UUID) -> bytes:
    return encode_message(Kind.ID, identity_bytes(identity))


def encode_audio(samples: bytes) -> bytes:
    """Frame signed linear samples as a SLIN message.

    Raises:
        PayloadTooLarge: if more than 65535 bytes are given. The input is
            never truncated.
    """
    return encode_message(Kind.SLIN, samples)


def encode_error(code: int | None = None) -> bytes:
    if code is None:
        return encode_message(Kind.ERROR)
    return encode_message(Kind.ERROR, bytes([int(code) & 0xFF]))


def decode_message(data: bytes) -> Message:
    """Decode the message at the start of a complete buffer.

    Trailing bytes beyond the first message are ignored.

    Raises:
        IncompleteHeader: fewer than 3 bytes
        IncompleteBody: the payload is shorter than the header announces
    """
    if len(data) < HEADER_SIZE:
        raise IncompleteHeader(
            f"need {HEADER_SIZE} header bytes, got {len(data)}",
            partial=bytes(data),
            expected=HEADER_SIZE,
        )
    kind, length = HEADER.unpack_from(data)
    body = bytes(data[HEADER_SIZE : HEADER_SIZE + length])
    if len(body) < length:
        raise IncompleteBody(
            f"need {length} payload bytes, got {len(body)}",
            partial=body,
            expected=length,
        )
    return Message(kind, body)


async def read_message(reader: asyncio.StreamReader) -> Message:
    """Read the next message from a stream.

    Partial reads are retried until the header and the whole payload
    have arrived or the stream ends.

    Raises:
        IncompleteHeader: the stream ended before a full header (eof=True;
            `partial` is empty on a clean close between messages)
        IncompleteBody: the stream ended inside the payload
    """
    try:
        header = await reader.readexactly(HEADER_SIZE)
    except asyncio.IncompleteReadError as e:
        raise IncompleteHeader(
            f"stream closed after {len(e.partial)} of {HEADER_SIZE} header bytes",
            partial=e.partial,
            expected=HEADER_SIZE,
            eof=True,
        ) from e

    kind, length = HEADER.unpack(header)
    if length == 0:
        return Message(kind)

    try:
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise IncompleteBody(
            f"stream closed after {len(e.partial)} of {length} payload bytes",
            partial=e.partial,
            expected=length,
            eof=True,
        ) from e

    return Message(kind, payload)
