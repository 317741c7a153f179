"""AudioSocket telephony transport."""

from audiosocket.services.telephony.connector import Connection, connect, parse_endpoint
from audiosocket.services.telephony.server import AudioSocketServer, CallMedia
from audiosocket.services.telephony.session import (
    AudioSocketSession,
    SessionOutcome,
    SessionResult,
    accept_session,
    dial,
    run_session,
)

__all__ = [
    "AudioSocketServer",
    "AudioSocketSession",
    "CallMedia",
    "Connection",
    "SessionOutcome",
    "SessionResult",
    "accept_session",
    "connect",
    "dial",
    "parse_endpoint",
    "run_session",
]
