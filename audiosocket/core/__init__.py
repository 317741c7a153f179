"""Protocol codec and session state."""

from audiosocket.core.protocol import (
    ErrorCode,
    Kind,
    Message,
    decode_message,
    encode_audio,
    encode_hangup,
    encode_identity,
    read_message,
)
from audiosocket.core.state_machine import SessionState, SessionStateMachine

__all__ = [
    "ErrorCode",
    "Kind",
    "Message",
    "decode_message",
    "encode_audio",
    "encode_hangup",
    "encode_identity",
    "read_message",
    "SessionState",
    "SessionStateMachine",
]
