"""Audio sources and sinks handed to a relay session.

The caller owns these objects. A session only reads frames from the
source and writes decoded payloads to the sink.
"""

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

from audiosocket.core.audio_utils import silence


@runtime_checkable
class AudioSource(Protocol):
    """Yields raw signed linear audio on demand."""

    async def read(self, size: int) -> bytes:
        """Return up to `size` bytes, or b"" once the source is exhausted."""
        ...


@runtime_checkable
class AudioSink(Protocol):
    """Accepts raw signed linear audio."""

    async def write(self, data: bytes) -> None: ...


class BytesAudioSource:
    """Plays an in-memory buffer once."""

    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))
        self.offset = 0

    @classmethod
    def from_file(cls, path: str | Path) -> "BytesAudioSource":
        """Load a raw .slin file (8kHz, 16-bit, mono, no header)."""
        return cls(Path(path).read_bytes())

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    async def read(self, size: int) -> bytes:
        chunk = bytes(self._data[self.offset : self.offset + size])
        self.offset += len(chunk)
        return chunk


class SilenceSource:
    """Endless silence."""

    async def read(self, size: int) -> bytes:
        return silence(size)


class QueueAudioSource:
    """Pulls audio chunks from a queue; a None item ends the source.

    Chunks larger than the requested size are split across reads.
    """

    def __init__(self, queue: asyncio.Queue[bytes | None] | None = None):
        self.queue: asyncio.Queue[bytes | None] = queue or asyncio.Queue()
        self._pending = b""
        self._finished = False

    async def read(self, size: int) -> bytes:
        while not self._pending and not self._finished:
            item = await self.queue.get()
            if item is None:
                self._finished = True
            else:
                self._pending = item
        chunk, self._pending = self._pending[:size], self._pending[size:]
        return chunk


class QueueAudioSink:
    """Puts every received payload on a queue."""

    def __init__(self, queue: asyncio.Queue[bytes] | None = None):
        self.queue: asyncio.Queue[bytes] = queue or asyncio.Queue()

    async def write(self, data: bytes) -> None:
        await self.queue.put(data)


class BufferAudioSink:
    """Accumulates received audio in memory."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.frames = 0

    async def write(self, data: bytes) -> None:
        self._buffer += data
        self.frames += 1

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)


class NullAudioSink:
    """Discards received audio."""

    async def write(self, data: bytes) -> None:
        return None
