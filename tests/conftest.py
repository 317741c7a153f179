"""Pytest configuration and fixtures for AudioSocket tests."""

import asyncio
import uuid
from typing import AsyncIterator

import pytest

from audiosocket.config.settings import Settings
from audiosocket.core.protocol import Message
from audiosocket.services.telephony.connector import Connection
from audiosocket.utils.exceptions import IncompleteMessage


@pytest.fixture
def settings() -> Settings:
    """Create test settings bound to an ephemeral loopback port."""
    return Settings(
        host="127.0.0.1",
        port=0,
        connect_timeout_ms=500,
        bootstrap_timeout_ms=500,
        max_call_duration_s=5.0,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def identity() -> uuid.UUID:
    return uuid.UUID("6f1c9a2e-0b7d-4c43-9d1e-2a3b4c5d6e7f")


@pytest.fixture
def sample_audio_bytes() -> bytes:
    """20ms of 8kHz 16-bit silence (320 bytes)."""
    return bytes(320)


@pytest.fixture
async def connection_pair() -> AsyncIterator[tuple[Connection, Connection]]:
    """A connected (dialer, acceptor) pair over loopback TCP."""
    accepted: asyncio.Queue[Connection] = asyncio.Queue()

    async def on_accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await accepted.put(Connection.from_streams(reader, writer))

    server = await asyncio.start_server(on_accept, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    dialer = Connection(reader, writer)
    acceptor = await asyncio.wait_for(accepted.get(), 1.0)

    yield dialer, acceptor

    await dialer.close()
    await acceptor.close()
    server.close()
    await server.wait_closed()


async def collect_messages(
    connection: Connection,
    clock: list[float] | None = None,
) -> list[Message]:
    """Read messages until the peer closes the stream."""
    loop = asyncio.get_running_loop()
    messages: list[Message] = []
    while True:
        try:
            message = await connection.receive()
        except IncompleteMessage:
            return messages
        messages.append(message)
        if clock is not None:
            clock.append(loop.time())


@pytest.fixture
def collect():
    """Reader that gathers messages until the peer closes."""
    return collect_messages
