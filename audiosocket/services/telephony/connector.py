"""Connection establishment for AudioSocket streams."""

import asyncio
import socket
from typing import Any

from audiosocket.core.protocol import Message, read_message
from audiosocket.utils.exceptions import (
    ConnectFailed,
    ConnectRefused,
    ConnectTimeout,
    ReadFailure,
    WriteFailure,
)
from audiosocket.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT = 2.0
CLOSE_TIMEOUT = 1.0

Endpoint = str | tuple[str, int]


def parse_endpoint(endpoint: Endpoint) -> tuple[str, int]:
    """Split an endpoint into host and port.

    Accepts "host:port", "[v6addr]:port" or a (host, port) tuple.
    The port is required.
    """
    if isinstance(endpoint, tuple):
        host, port = endpoint
        return host, int(port)

    if endpoint.startswith("["):
        host, sep, rest = endpoint[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"no port provided in endpoint {endpoint!r}")
        port_str = rest[1:]
    else:
        host, sep, port_str = endpoint.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"no port provided in endpoint {endpoint!r}")

    if not host or not port_str.isdigit() or not 0 < int(port_str) <= 65535:
        raise ValueError(f"invalid endpoint {endpoint!r}")
    return host, int(port_str)


class Connection:
    """A duplex AudioSocket byte stream owned by a single session."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._closed = False

    @classmethod
    def from_streams(
        cls,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> "Connection":
        """Wrap the streams of an accepted connection."""
        return cls(reader, writer)

    @property
    def peer(self) -> Any:
        return self.writer.get_extra_info("peername")

    @property
    def is_closing(self) -> bool:
        return self._closed or self.writer.is_closing()

    async def send(self, data: bytes) -> None:
        """Write data and wait until the transport buffer drains.

        Raises:
            WriteFailure: the connection is closed or the write failed
        """
        if self.is_closing:
            raise WriteFailure("connection is closed")
        try:
            self.writer.write(data)
            await self.writer.drain()
        except (OSError, RuntimeError) as e:
            raise WriteFailure(f"write failed: {e}", details={"peer": self.peer}) from e

    async def receive(self) -> Message:
        """Read the next message.

        Raises:
            IncompleteHeader, IncompleteBody: the stream ended mid-message
            ReadFailure: the transport reported an error
        """
        try:
            return await read_message(self.reader)
        except OSError as e:
            raise ReadFailure(f"read failed: {e}", details={"peer": self.peer}) from e

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("connection_close_timeout", peer=self.peer)
            self.writer.transport.abort()
        except OSError as e:
            logger.debug("connection_close_error", peer=self.peer, error=str(e))

    def abort(self) -> None:
        """Drop the connection at once, discarding unsent data."""
        self._closed = True
        self.writer.transport.abort()


async def _connect_candidate(
    family: int,
    address: tuple,
    timeout: float,
) -> socket.socket:
    """Non-blocking connect to one resolved address, bounded by `timeout`."""
    loop = asyncio.get_running_loop()
    try:
        sock = socket.socket(family, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except OSError as e:
        raise ConnectRefused(f"unable to create socket: {e}", details={"address": address}) from e

    sock.setblocking(False)
    try:
        await asyncio.wait_for(loop.sock_connect(sock, address), timeout)
    except asyncio.TimeoutError as e:
        sock.close()
        raise ConnectTimeout(
            f"connection to {address} timed out after {timeout}s",
            details={"address": address, "timeout": timeout},
        ) from e
    except OSError as e:
        sock.close()
        raise ConnectRefused(
            f"connection to {address} failed: {e}",
            details={"address": address, "errno": e.errno},
        ) from e
    except asyncio.CancelledError:
        sock.close()
        raise

    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return sock


async def connect(
    endpoint: Endpoint,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> Connection:
    """Connect to an AudioSocket service.

    Every resolved address is tried in order, each one bounded by
    `timeout` seconds. The first success wins.

    Args:
        endpoint: "host:port" or (host, port)
        timeout: Per-address connect timeout in seconds

    Returns:
        The established connection

    Raises:
        ConnectFailed: resolution failed or every address failed
    """
    host, port = parse_endpoint(endpoint)
    loop = asyncio.get_running_loop()

    try:
        candidates = await loop.getaddrinfo(
            host, port, type=socket.SOCK_STREAM, proto=socket.IPPROTO_TCP
        )
    except socket.gaierror as e:
        logger.error("audiosocket_resolve_failed", host=host, port=port, error=str(e))
        raise ConnectFailed(
            f"failed to resolve AudioSocket service {host}:{port}: {e}",
            details={"host": host, "port": port},
        ) from e

    attempts: list[str] = []
    for family, _, _, _, address in candidates:
        try:
            sock = await _connect_candidate(family, address, timeout)
        except (ConnectTimeout, ConnectRefused) as e:
            logger.warning(
                "audiosocket_candidate_failed",
                address=str(address),
                reason=type(e).__name__,
                error=e.message,
            )
            attempts.append(f"{address}: {e.message}")
            continue

        try:
            reader, writer = await asyncio.open_connection(sock=sock)
        except BaseException:
            sock.close()
            raise
        logger.info("audiosocket_connected", host=host, port=port, address=str(address))
        return Connection(reader, writer)

    logger.error("audiosocket_connect_failed", host=host, port=port, attempts=len(attempts))
    raise ConnectFailed(
        f"failed to connect to AudioSocket service {host}:{port}",
        details={"host": host, "port": port, "attempts": attempts},
    )
