"""Utility modules."""

from audiosocket.utils.exceptions import (
    AudioSocketError,
    AudioSourceError,
    ConnectError,
    PayloadTooLarge,
    ProtocolError,
    TransportError,
)
from audiosocket.utils.logging import setup_logging, get_logger

__all__ = [
    "AudioSocketError",
    "AudioSourceError",
    "ConnectError",
    "PayloadTooLarge",
    "ProtocolError",
    "TransportError",
    "setup_logging",
    "get_logger",
]
