"""AudioSocket TCP server."""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Callable

from audiosocket.config.settings import Settings
from audiosocket.services.telephony.connector import Connection
from audiosocket.services.telephony.media import AudioSink, AudioSource
from audiosocket.services.telephony.session import (
    AudioSocketSession,
    ErrorHandler,
    SessionResult,
    SignalHandler,
)
from audiosocket.utils.logging import bind_call, get_logger

logger = get_logger(__name__)


@dataclass
class CallMedia:
    """Audio endpoints and callbacks for one accepted call."""

    source: AudioSource | None = None
    sink: AudioSink | None = None
    on_signal: SignalHandler | None = None
    on_error: ErrorHandler | None = None


MediaFactory = Callable[[Connection], CallMedia]


class AudioSocketServer:
    """TCP server accepting AudioSocket connections.

    Each connection gets its own session: the caller's identity is read
    first, then audio from the media factory's source is paced out while
    inbound audio goes to its sink. Calls last at most
    `settings.max_call_duration_s`.
    """

    def __init__(
        self,
        settings: Settings,
        media_factory: MediaFactory,
        on_result: Callable[[SessionResult], None] | None = None,
    ):
        """Initialize the AudioSocket server.

        Args:
            settings: Relay settings
            media_factory: Builds the source/sink for each accepted connection
            on_result: Called with the result of every finished session
        """
        self.settings = settings
        self.host = settings.host
        self.port = settings.port

        self._media_factory = media_factory
        self._on_result = on_result
        self._server: asyncio.Server | None = None
        self._active_calls: dict[str, AudioSocketSession] = {}

        logger.info(
            "audiosocket_server_initialized",
            host=self.host,
            port=self.port,
            frame_size=settings.frame_size_bytes,
        )

    async def start(self) -> None:
        """Bind the listening socket."""
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port,
        )

        logger.info(
            "audiosocket_server_started",
            host=self.host,
            port=self.bound_port,
        )

    async def serve_forever(self) -> None:
        """Start (if needed) and serve until cancelled."""
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop the server gracefully, draining active calls."""
        if self._server:
            self._server.close()

        for session in self._active_calls.values():
            session.cancel()

        if self._server:
            await self._server.wait_closed()
            self._server = None

        logger.info("audiosocket_server_stopped")

    @property
    def bound_port(self) -> int:
        """Port actually bound, useful when configured with port 0."""
        if self._server is None or not self._server.sockets:
            return self.port
        return self._server.sockets[0].getsockname()[1]

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Run one session on a newly accepted connection."""
        call_id = str(uuid.uuid4())
        connection = Connection.from_streams(reader, writer)
        bind_call(call_id)

        logger.info("call_started", peer=connection.peer)

        media = self._media_factory(connection)
        session = AudioSocketSession(
            connection,
            media.source,
            media.sink,
            timeout=self.settings.max_call_duration_s,
            frame_size=self.settings.frame_size_bytes,
            cadence=self.settings.cadence,
            on_signal=media.on_signal,
            on_error=media.on_error,
            bootstrap_timeout=self.settings.bootstrap_timeout,
        )
        self._active_calls[call_id] = session

        try:
            result = await session.run()
        except asyncio.CancelledError:
            logger.info("call_cancelled")
            raise
        finally:
            self._active_calls.pop(call_id, None)

        logger.info(
            "call_ended",
            identity=str(result.identity),
            outcome=result.outcome.value,
        )
        if self._on_result is not None:
            self._on_result(result)

    @property
    def active_call_count(self) -> int:
        """Number of active calls."""
        return len(self._active_calls)

    def get_active_calls(self) -> list[str]:
        """Get list of active call IDs."""
        return list(self._active_calls.keys())
