"""Boundary to the host telephony engine.

The host exposes a channel through three capabilities: read a frame,
write a frame and report the channel state. These adapters turn such a
channel into the source and sink a relay session consumes.
"""

from enum import Enum
from typing import Protocol

from audiosocket.utils.logging import get_logger

logger = get_logger(__name__)


class ChannelState(Enum):
    """Channel states as reported by the host."""

    DOWN = "down"
    RINGING = "ringing"
    UP = "up"
    HUNGUP = "hungup"


class HostChannel(Protocol):
    """Capabilities the host provides for one call leg."""

    async def read_frame(self) -> bytes | None:
        """Next signed linear frame from the caller, None when the channel is gone."""
        ...

    async def write_frame(self, data: bytes) -> None: ...

    def get_state(self) -> ChannelState: ...


class ChannelAudioSource:
    """Reads caller audio from a host channel.

    Frames larger than the requested size are split across reads. The
    source ends once the channel leaves the UP state.
    """

    def __init__(self, channel: HostChannel):
        self.channel = channel
        self._pending = b""

    async def read(self, size: int) -> bytes:
        while not self._pending:
            if self.channel.get_state() is not ChannelState.UP:
                return b""
            frame = await self.channel.read_frame()
            if frame is None:
                return b""
            self._pending = frame
        chunk, self._pending = self._pending[:size], self._pending[size:]
        return chunk


class ChannelAudioSink:
    """Writes received audio into a host channel."""

    def __init__(self, channel: HostChannel):
        self.channel = channel
        self.dropped = 0

    async def write(self, data: bytes) -> None:
        state = self.channel.get_state()
        if state is not ChannelState.UP:
            self.dropped += 1
            logger.debug("channel_frame_dropped", state=state.value, size=len(data))
            return
        await self.channel.write_frame(data)
