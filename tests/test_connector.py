"""Tests for AudioSocket connection establishment."""

import asyncio
import socket

import pytest

from audiosocket.services.telephony.connector import Connection, connect, parse_endpoint
from audiosocket.utils.exceptions import ConnectFailed, WriteFailure


def closed_port() -> int:
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def listener():
    """A loopback server that holds accepted connections open."""
    accepted: list[asyncio.StreamWriter] = []

    async def on_accept(reader, writer):
        accepted.append(writer)

    server = await asyncio.start_server(on_accept, "127.0.0.1", 0)
    yield server.sockets[0].getsockname()[1]

    for writer in accepted:
        writer.close()
    server.close()
    await server.wait_closed()


class TestParseEndpoint:
    """Tests for parse_endpoint."""

    @pytest.mark.parametrize(
        "endpoint,expected",
        [
            ("localhost:9092", ("localhost", 9092)),
            ("10.0.0.5:8080", ("10.0.0.5", 8080)),
            ("[::1]:9092", ("::1", 9092)),
            (("example.com", 4000), ("example.com", 4000)),
        ],
    )
    def test_valid(self, endpoint, expected):
        assert parse_endpoint(endpoint) == expected

    @pytest.mark.parametrize(
        "endpoint",
        ["localhost", "localhost:", ":9092", "host:http", "[::1]", "::1:9092", "host:70000"],
    )
    def test_port_required(self, endpoint):
        """A missing or malformed port is rejected."""
        with pytest.raises(ValueError):
            parse_endpoint(endpoint)


class TestConnect:
    """Tests for connect."""

    async def test_connects(self, listener):
        connection = await connect(f"127.0.0.1:{listener}", timeout=1.0)
        try:
            assert isinstance(connection, Connection)
            assert connection.peer[1] == listener
            assert not connection.is_closing
        finally:
            await connection.close()

    async def test_refused(self):
        """A refused address exhausts the candidates."""
        with pytest.raises(ConnectFailed) as exc_info:
            await connect(("127.0.0.1", closed_port()), timeout=1.0)
        assert len(exc_info.value.details["attempts"]) == 1

    async def test_timeout(self, monkeypatch):
        """A candidate that never answers is abandoned after the timeout."""
        loop = asyncio.get_running_loop()

        async def never_connects(sock, address):
            await asyncio.sleep(10)

        monkeypatch.setattr(loop, "sock_connect", never_connects)

        started = loop.time()
        with pytest.raises(ConnectFailed) as exc_info:
            await connect(("127.0.0.1", 9), timeout=0.05)

        assert loop.time() - started < 1.0
        assert "timed out" in exc_info.value.details["attempts"][0]

    async def test_falls_through_to_next_candidate(self, monkeypatch, listener):
        """Failed candidates are skipped; the first success is returned."""
        loop = asyncio.get_running_loop()
        refused = closed_port()

        async def two_candidates(host, port, **kwargs):
            return [
                (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", ("127.0.0.1", refused)),
                (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", ("127.0.0.1", listener)),
            ]

        monkeypatch.setattr(loop, "getaddrinfo", two_candidates)

        connection = await connect("audiosocket.test:9092", timeout=1.0)
        try:
            assert connection.peer[1] == listener
        finally:
            await connection.close()

    async def test_stream_setup_failure_closes_socket(self, monkeypatch, listener):
        """The connected socket is released when stream setup fails."""
        opened: list[socket.socket] = []

        async def broken_streams(sock):
            opened.append(sock)
            raise OSError("no streams")

        monkeypatch.setattr(asyncio, "open_connection", broken_streams)

        with pytest.raises(OSError):
            await connect(("127.0.0.1", listener), timeout=1.0)
        assert opened[0].fileno() == -1

    async def test_resolution_failure(self, monkeypatch):
        loop = asyncio.get_running_loop()

        async def unresolvable(host, port, **kwargs):
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        monkeypatch.setattr(loop, "getaddrinfo", unresolvable)

        with pytest.raises(ConnectFailed):
            await connect("nowhere.invalid:9092")


class TestConnection:
    """Tests for Connection."""

    async def test_send_after_close(self, connection_pair):
        dialer, _ = connection_pair
        await dialer.close()
        with pytest.raises(WriteFailure):
            await dialer.send(b"\x00\x00\x00")

    async def test_close_is_idempotent(self, connection_pair):
        dialer, _ = connection_pair
        await dialer.close()
        await dialer.close()
        assert dialer.is_closing

    async def test_send_and_receive(self, connection_pair):
        dialer, acceptor = connection_pair
        await dialer.send(b"\x10\x00\x02\x01\x00")
        message = await acceptor.receive()
        assert message.payload == b"\x01\x00"

    async def test_abort(self, connection_pair):
        """Abort drops the connection without waiting for a flush."""
        dialer, acceptor = connection_pair
        dialer.abort()
        assert dialer.is_closing
        with pytest.raises(WriteFailure):
            await dialer.send(b"\x00\x00\x00")
