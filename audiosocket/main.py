"""Main entrypoint: an AudioSocket server that plays a file to every caller."""

import asyncio
import signal
from pathlib import Path

from audiosocket import __version__
from audiosocket.config.settings import Settings, get_settings
from audiosocket.core.audio_utils import bytes_to_numpy, is_speech_present
from audiosocket.core.protocol import ErrorCode, Kind
from audiosocket.services.telephony.connector import Connection
from audiosocket.services.telephony.media import BytesAudioSource
from audiosocket.services.telephony.server import AudioSocketServer, CallMedia
from audiosocket.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


class CallerActivityMonitor:
    """Sink that logs when the caller starts and stops talking."""

    def __init__(self, threshold: float = 0.01):
        self.threshold = threshold
        self.speaking = False

    async def write(self, data: bytes) -> None:
        speaking = is_speech_present(bytes_to_numpy(data), threshold=self.threshold)
        if speaking != self.speaking:
            self.speaking = speaking
            logger.info("caller_speech", speaking=speaking)


async def log_signal(kind: Kind, payload: bytes) -> None:
    logger.info("caller_signal", kind=kind.name, payload=payload.hex())


async def log_error(code: ErrorCode) -> None:
    logger.warning("caller_error", code=int(code))


def build_media_factory(settings: Settings):
    """Media for each call: the configured file, or nothing to play."""
    audio = b""
    if settings.audio_file:
        audio = Path(settings.audio_file).read_bytes()
        logger.info("audio_file_loaded", path=settings.audio_file, size=len(audio))

    def factory(connection: Connection) -> CallMedia:
        return CallMedia(
            source=BytesAudioSource(audio) if audio else None,
            sink=CallerActivityMonitor(),
            on_signal=log_signal,
            on_error=log_error,
        )

    return factory


async def main() -> None:
    """Main application entrypoint."""
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        format=settings.log_format,
    )

    logger.info(
        "audiosocket_starting",
        version=__version__,
        frame_size=settings.frame_size_bytes,
        max_call_duration_s=settings.max_call_duration_s,
    )

    server = AudioSocketServer(settings, build_media_factory(settings))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("shutdown_signal_received")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    await server.start()
    server_task = asyncio.create_task(server.serve_forever())

    logger.info("audiosocket_ready", host=settings.host, port=server.bound_port)

    await shutdown_event.wait()

    logger.info("audiosocket_shutting_down")
    await server.stop()
    server_task.cancel()
    try:
        await server_task
    except asyncio.CancelledError:
        pass

    logger.info("audiosocket_stopped")


def run() -> None:
    """Run the application."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
