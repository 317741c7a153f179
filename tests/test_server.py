"""Tests for the AudioSocket server."""

import asyncio

import pytest

from audiosocket.services.telephony.media import BufferAudioSink, BytesAudioSource, SilenceSource
from audiosocket.services.telephony.server import AudioSocketServer, CallMedia
from audiosocket.services.telephony.session import SessionOutcome, SessionResult, dial


@pytest.fixture
async def make_server(settings):
    """Start servers on ephemeral ports and stop them after the test."""
    servers: list[AudioSocketServer] = []

    async def factory(media_factory, on_result=None) -> AudioSocketServer:
        server = AudioSocketServer(settings, media_factory, on_result=on_result)
        await server.start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        await server.stop()


class TestAudioSocketServer:
    """Tests for AudioSocketServer."""

    async def test_plays_audio_to_caller(self, make_server, identity):
        """The caller receives the server's audio and then a hangup."""
        results: list[SessionResult] = []
        finished = asyncio.Event()
        server_sinks: list[BufferAudioSink] = []

        def media(connection) -> CallMedia:
            sink = BufferAudioSink()
            server_sinks.append(sink)
            return CallMedia(source=BytesAudioSource(b"\x01\x00" * 320), sink=sink)

        def on_result(result: SessionResult) -> None:
            results.append(result)
            finished.set()

        server = await make_server(media, on_result)
        caller_sink = BufferAudioSink()

        result = await dial(
            ("127.0.0.1", server.bound_port),
            identity,
            sink=caller_sink,
            timeout=2.0,
        )
        await asyncio.wait_for(finished.wait(), 2.0)

        assert result.outcome is SessionOutcome.NORMAL
        assert caller_sink.getvalue() == b"\x01\x00" * 320
        assert caller_sink.frames == 2

        assert results[0].identity == identity
        assert results[0].outcome is SessionOutcome.NORMAL
        assert results[0].frames_sent == 2
        assert server.active_call_count == 0

    async def test_forwards_caller_audio(self, make_server, identity):
        sinks: list[BufferAudioSink] = []
        finished = asyncio.Event()

        def media(connection) -> CallMedia:
            sinks.append(BufferAudioSink())
            return CallMedia(sink=sinks[-1])

        server = await make_server(media, lambda result: finished.set())

        result = await dial(
            f"127.0.0.1:{server.bound_port}",
            identity,
            BytesAudioSource(bytes(960)),
        )
        await asyncio.wait_for(finished.wait(), 2.0)

        assert result.ok
        assert len(sinks[0]) == 960

    async def test_stop_drains_active_calls(self, make_server, identity):
        """Stopping the server hangs up on connected callers."""
        server_results: list[SessionResult] = []

        server = await make_server(
            lambda connection: CallMedia(source=SilenceSource()),
            server_results.append,
        )
        caller = asyncio.create_task(
            dial(("127.0.0.1", server.bound_port), identity, timeout=5.0)
        )

        for _ in range(100):
            if server.active_call_count:
                break
            await asyncio.sleep(0.01)
        assert server.get_active_calls()

        await server.stop()
        result = await asyncio.wait_for(caller, 2.0)
        for _ in range(100):
            if server_results:
                break
            await asyncio.sleep(0.01)

        assert result.outcome is SessionOutcome.NORMAL
        assert server_results[0].outcome is SessionOutcome.CANCELLED
