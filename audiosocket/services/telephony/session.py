"""AudioSocket relay sessions.

A session owns one connection. After the identity exchange it runs two
tasks until either ends the call:

- outbound: reads frames from the audio source and sends one SLIN
  message per cadence tick
- inbound: decodes messages and dispatches them by kind

The session deadline (or `cancel()`) stops both, sends a hangup and
closes the connection. Exactly one SessionResult is returned per session.
"""

import asyncio
import inspect
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from audiosocket.core.audio_utils import (
    DEFAULT_FRAME_DURATION_MS,
    frame_size_bytes,
    iter_frames,
)
from audiosocket.core.protocol import (
    MAX_PAYLOAD_SIZE,
    ErrorCode,
    Kind,
    encode_audio,
    encode_hangup,
    encode_identity,
    identity_bytes,
)
from audiosocket.core.state_machine import SessionState, SessionStateMachine
from audiosocket.services.telephony.connector import (
    DEFAULT_CONNECT_TIMEOUT,
    Connection,
    Endpoint,
    connect,
)
from audiosocket.services.telephony.media import AudioSink, AudioSource, NullAudioSink
from audiosocket.utils.exceptions import (
    AudioSocketError,
    AudioSourceError,
    BootstrapFailed,
    IncompleteMessage,
    PayloadTooLarge,
    ProtocolError,
    ProtocolViolation,
    ReadFailure,
    WriteFailure,
)
from audiosocket.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FRAME_SIZE = frame_size_bytes()  # 320 bytes
DEFAULT_CADENCE = DEFAULT_FRAME_DURATION_MS / 1000
DEFAULT_BOOTSTRAP_TIMEOUT = 2.0
HANGUP_TIMEOUT = 1.0

SignalHandler = Callable[[Kind, bytes], Awaitable[None] | None]
ErrorHandler = Callable[[ErrorCode], Awaitable[None] | None]


class SessionOutcome(Enum):
    """Final disposition of a session."""

    NORMAL = "normal"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PROTOCOL_ERROR = "protocol_error"
    PROTOCOL_VIOLATION = "protocol_violation"
    BOOTSTRAP_FAILED = "bootstrap_failed"
    WRITE_FAILURE = "write_failure"
    READ_FAILURE = "read_failure"
    SOURCE_FAILURE = "source_failure"


# Checked in order; subclasses before their bases
_FAILURE_OUTCOMES: tuple[tuple[type[AudioSocketError], SessionOutcome], ...] = (
    (WriteFailure, SessionOutcome.WRITE_FAILURE),
    (ReadFailure, SessionOutcome.READ_FAILURE),
    (ProtocolViolation, SessionOutcome.PROTOCOL_VIOLATION),
    (ProtocolError, SessionOutcome.PROTOCOL_ERROR),
    (BootstrapFailed, SessionOutcome.BOOTSTRAP_FAILED),
    (AudioSourceError, SessionOutcome.SOURCE_FAILURE),
    (PayloadTooLarge, SessionOutcome.SOURCE_FAILURE),
)


def outcome_for(error: AudioSocketError) -> SessionOutcome:
    for error_type, outcome in _FAILURE_OUTCOMES:
        if isinstance(error, error_type):
            return outcome
    # remaining errors come from the wire
    return SessionOutcome.PROTOCOL_ERROR


@dataclass(frozen=True)
class SessionResult:
    """What happened to a session, reported once when it closes."""

    identity: uuid.UUID | None
    outcome: SessionOutcome
    error: AudioSocketError | None = None
    frames_sent: int = 0
    bytes_sent: int = 0
    frames_received: int = 0
    error_codes: tuple[ErrorCode, ...] = ()
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is SessionOutcome.NORMAL


class _StopReason(Enum):
    SOURCE_EXHAUSTED = "source_exhausted"
    PEER_HANGUP = "peer_hangup"
    PEER_CLOSED = "peer_closed"


async def send_identity(
    connection: Connection,
    identity: bytes | uuid.UUID,
    timeout: float | None = None,
) -> None:
    """Send the identity message that must open every dialed connection.

    Raises:
        BootstrapFailed: the identity is malformed or could not be written
    """
    try:
        data = encode_identity(identity)
    except ValueError as e:
        raise BootstrapFailed(f"invalid identity: {e}") from e

    try:
        await asyncio.wait_for(connection.send(data), timeout)
    except WriteFailure as e:
        raise BootstrapFailed(f"failed to send identity: {e.message}", details=e.details) from e
    except asyncio.TimeoutError as e:
        raise BootstrapFailed(f"identity not sent within {timeout}s") from e


async def receive_identity(
    connection: Connection,
    timeout: float | None = DEFAULT_BOOTSTRAP_TIMEOUT,
) -> uuid.UUID:
    """Read the identity message that must open every accepted connection.

    Raises:
        ProtocolViolation: the first message is not an identity message
        BootstrapFailed: the stream ended, failed or timed out first
    """
    try:
        message = await asyncio.wait_for(connection.receive(), timeout)
    except asyncio.TimeoutError as e:
        raise BootstrapFailed(f"no identity received within {timeout}s") from e
    except IncompleteMessage as e:
        raise BootstrapFailed("connection closed before identity", details=e.details) from e
    except ReadFailure as e:
        raise BootstrapFailed(f"failed to read identity: {e.message}", details=e.details) from e

    return message.identity


class AudioSocketSession:
    """Relay state for one call over one connection.

    Args:
        connection: The session's exclusively owned connection
        source: Outbound audio; None for a receive-only session
        sink: Receives inbound audio payloads
        identity: Identity to send (dialing side). When None the identity
            is expected as the first inbound message (accepting side).
        deadline: Absolute event loop time at which the session drains
        timeout: Seconds from `run()` until the session drains; the
            earlier of `deadline` and `timeout` applies
        frame_size: Bytes of audio per outbound message
        cadence: Seconds between outbound messages
        on_signal: Called with (kind, payload) for silence/DTMF messages
        on_error: Called with the error code of ERROR messages
        bootstrap_timeout: Accepting side only, how long to wait for the
            identity message
    """

    def __init__(
        self,
        connection: Connection,
        source: AudioSource | None = None,
        sink: AudioSink | None = None,
        *,
        identity: bytes | uuid.UUID | None = None,
        deadline: float | None = None,
        timeout: float | None = None,
        frame_size: int = DEFAULT_FRAME_SIZE,
        cadence: float = DEFAULT_CADENCE,
        on_signal: SignalHandler | None = None,
        on_error: ErrorHandler | None = None,
        bootstrap_timeout: float | None = DEFAULT_BOOTSTRAP_TIMEOUT,
    ):
        if frame_size < 1:
            raise ValueError(f"frame_size must be positive, got {frame_size}")
        if frame_size > MAX_PAYLOAD_SIZE:
            raise PayloadTooLarge(
                f"frame_size {frame_size} exceeds {MAX_PAYLOAD_SIZE}",
                details={"length": frame_size},
            )
        if cadence <= 0:
            raise ValueError(f"cadence must be positive, got {cadence}")

        self.connection = connection
        self.source = source
        self.sink = sink if sink is not None else NullAudioSink()
        self.frame_size = frame_size
        self.cadence = cadence
        self.on_signal = on_signal
        self.on_error = on_error
        self.bootstrap_timeout = bootstrap_timeout

        self._outgoing_identity = identity
        self.identity: uuid.UUID | None = None
        self._deadline = deadline
        self._timeout = timeout

        self.state_machine = SessionStateMachine(str(connection.peer))
        self._cancelled = asyncio.Event()
        self._started = False
        self._log = logger.bind(peer=str(connection.peer))

        # Relay counters
        self.frames_sent = 0
        self.bytes_sent = 0
        self.frames_received = 0
        self.last_sent_at: float | None = None
        self.error_codes: list[ErrorCode] = []

    @property
    def state(self) -> SessionState:
        return self.state_machine.state

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def cancel(self) -> None:
        """Stop the session as if its deadline had expired."""
        self._cancelled.set()

    def _remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    async def run(self) -> SessionResult:
        """Run the session to completion.

        Raises:
            RuntimeError: if called more than once
        """
        if self._started:
            raise RuntimeError("session already started")
        self._started = True

        loop = asyncio.get_running_loop()
        started_at = loop.time()
        if self._timeout is not None:
            timeout_deadline = started_at + self._timeout
            if self._deadline is None or timeout_deadline < self._deadline:
                self._deadline = timeout_deadline

        try:
            try:
                await self._bootstrap()
            except (BootstrapFailed, ProtocolViolation) as e:
                self._log.warning("session_bootstrap_failed", error=e.message)
                return await self._finish(outcome_for(e), e, started_at, drain=False)

            self.state_machine.start_streaming()
            self._log.info("session_streaming", identity=str(self.identity))

            outcome, error, drain = await self._stream()
            return await self._finish(outcome, error, started_at, drain=drain)
        finally:
            # cancelled from outside, or an unexpected error escaped
            if not self.state_machine.is_closed:
                await self.connection.close()
                self.state_machine.close()

    async def _bootstrap(self) -> None:
        if self._outgoing_identity is not None:
            try:
                self.identity = uuid.UUID(bytes=identity_bytes(self._outgoing_identity))
            except ValueError as e:
                raise BootstrapFailed(f"invalid identity: {e}") from e
            await send_identity(self.connection, self.identity, timeout=self._remaining())
        else:
            timeout = self.bootstrap_timeout
            remaining = self._remaining()
            if remaining is not None and (timeout is None or remaining < timeout):
                timeout = remaining
            self.identity = await receive_identity(self.connection, timeout=timeout)

        self._log = self._log.bind(identity=str(self.identity))

    async def _stream(self) -> tuple[SessionOutcome, AudioSocketError | None, bool]:
        """Run both directions until one of them ends the session.

        Returns:
            (outcome, error, whether to drain with a hangup)
        """
        tasks: set[asyncio.Task] = {asyncio.create_task(self._receive_loop())}
        if self.source is not None:
            tasks.add(asyncio.create_task(self._send_loop()))
        cancel_waiter = asyncio.create_task(self._cancelled.wait())

        try:
            done, _ = await asyncio.wait(
                tasks | {cancel_waiter},
                timeout=self._remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in tasks | {cancel_waiter}:
                task.cancel()
            await asyncio.gather(*tasks, cancel_waiter, return_exceptions=True)

        if not done:
            self._log.info("session_deadline_expired")
            return SessionOutcome.TIMEOUT, None, True
        if cancel_waiter in done:
            self._log.info("session_cancelled")
            return SessionOutcome.CANCELLED, None, True

        finished = [task for task in done if task is not cancel_waiter]
        for task in finished:
            error = task.exception()
            if isinstance(error, AudioSocketError):
                self._log.warning(
                    "session_failed",
                    error_type=type(error).__name__,
                    error=error.message,
                )
                outcome = outcome_for(error)
                # hang up after a source failure
                return outcome, error, outcome is SessionOutcome.SOURCE_FAILURE
            if error is not None:
                raise error

        reasons = {task.result() for task in finished}
        for reason in (_StopReason.PEER_HANGUP, _StopReason.PEER_CLOSED):
            if reason in reasons:
                self._log.info("session_ended_by_peer", reason=reason.value)
                return SessionOutcome.NORMAL, None, False

        self._log.info("session_audio_complete", frames_sent=self.frames_sent)
        return SessionOutcome.NORMAL, None, True

    async def _send_loop(self) -> _StopReason:
        """Pace source audio onto the connection, one frame per tick."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        tick = 0

        while True:
            data = await self._read_source()
            if not data:
                return _StopReason.SOURCE_EXHAUSTED

            # a source may hand back more than one frame
            for chunk in iter_frames(data, self.frame_size):
                now = loop.time()
                due = start + tick * self.cadence
                if due > now:
                    await asyncio.sleep(due - now)
                elif now - due > self.cadence:
                    # source stalled; restart the schedule rather than bursting
                    start = now - tick * self.cadence

                await self.connection.send(encode_audio(chunk))
                tick += 1
                self.frames_sent += 1
                self.bytes_sent += len(chunk)
                self.last_sent_at = loop.time()

    async def _read_source(self) -> bytes:
        """Next block of outbound audio, empty once the source is exhausted.

        Raises:
            AudioSourceError: the source failed
        """
        try:
            return await self.source.read(self.frame_size)
        except Exception as e:
            raise AudioSourceError(
                f"audio source failed: {e}",
                details={"source": type(self.source).__name__},
            ) from e

    async def _receive_loop(self) -> _StopReason:
        """Decode inbound messages and dispatch them by kind."""
        while True:
            try:
                message = await self.connection.receive()
            except IncompleteMessage as e:
                if e.partial:
                    self._log.warning("truncated_message_at_eof", **e.details)
                return _StopReason.PEER_CLOSED

            kind = message.kind
            if kind is Kind.HANGUP:
                return _StopReason.PEER_HANGUP

            if kind is Kind.SLIN:
                if message.content_length % 2:
                    raise ProtocolError(
                        f"audio payload of odd length {message.content_length}",
                        details={"length": message.content_length},
                    )
                if not message.payload:
                    self._log.debug("empty_audio_message")
                    continue
                self.frames_received += 1
                await self._deliver(self.sink.write, message.payload)
            elif message.is_signal:
                self._log.debug("signal_received", kind=kind.name, size=message.content_length)
                if self.on_signal is not None:
                    await self._deliver(self.on_signal, kind, message.payload)
            elif kind is Kind.ERROR:
                code = message.error_code
                self.error_codes.append(code)
                self._log.warning(
                    "peer_error_received",
                    raw_kind=message.raw_kind,
                    code=int(code),
                )
                if self.on_error is not None:
                    await self._deliver(self.on_error, code)
            elif kind is Kind.ID:
                raise ProtocolError("identity message repeated after bootstrap")

    async def _deliver(self, callback: Callable[..., Any], *args: Any) -> None:
        """Hand data to caller code; its failures do not end the session."""
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._log.error(
                "session_callback_error",
                callback=getattr(callback, "__qualname__", repr(callback)),
                error=str(e),
            )

    async def _finish(
        self,
        outcome: SessionOutcome,
        error: AudioSocketError | None,
        started_at: float,
        drain: bool,
    ) -> SessionResult:
        if drain and self.state_machine.drain():
            try:
                await asyncio.wait_for(self.connection.send(encode_hangup()), HANGUP_TIMEOUT)
            except (WriteFailure, asyncio.TimeoutError) as e:
                self._log.warning("hangup_send_failed", error=str(e))
                # peer is not reading; buffered data would never flush
                self.connection.abort()

        await self.connection.close()
        self.state_machine.close()

        result = SessionResult(
            identity=self.identity,
            outcome=outcome,
            error=error,
            frames_sent=self.frames_sent,
            bytes_sent=self.bytes_sent,
            frames_received=self.frames_received,
            error_codes=tuple(self.error_codes),
            duration=asyncio.get_running_loop().time() - started_at,
        )
        self._log.info(
            "session_closed",
            outcome=outcome.value,
            frames_sent=result.frames_sent,
            frames_received=result.frames_received,
            duration=round(result.duration, 3),
        )
        return result


async def run_session(
    connection: Connection,
    identity: bytes | uuid.UUID,
    source: AudioSource | None = None,
    sink: AudioSink | None = None,
    deadline: float | None = None,
    **options: Any,
) -> SessionResult:
    """Run a session on a dialed connection.

    Sends the identity, then relays audio until hangup, end of stream,
    failure or the deadline (absolute event loop time).
    """
    session = AudioSocketSession(
        connection, source, sink, identity=identity, deadline=deadline, **options
    )
    return await session.run()


async def accept_session(
    connection: Connection,
    source: AudioSource | None = None,
    sink: AudioSink | None = None,
    deadline: float | None = None,
    **options: Any,
) -> SessionResult:
    """Run a session on an accepted connection.

    The first inbound message must carry the call identity.
    """
    session = AudioSocketSession(connection, source, sink, deadline=deadline, **options)
    return await session.run()


async def dial(
    endpoint: Endpoint,
    identity: bytes | uuid.UUID,
    source: AudioSource | None = None,
    sink: AudioSink | None = None,
    *,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    **options: Any,
) -> SessionResult:
    """Connect to an AudioSocket service and run a session on it.

    Raises:
        ConnectFailed: no connection could be established
    """
    connection = await connect(endpoint, connect_timeout)
    return await run_session(connection, identity, source, sink, **options)
