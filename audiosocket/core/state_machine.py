"""Session state machine for an AudioSocket relay."""

from enum import Enum
from typing import Callable

from audiosocket.utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """States of a relay session."""

    STARTING = "starting"  # Identity exchange in progress
    STREAMING = "streaming"  # Audio flowing in both directions
    DRAINING = "draining"  # Sending hangup, closing the connection
    CLOSED = "closed"  # Terminal


# Valid state transitions
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.STARTING: {SessionState.STREAMING, SessionState.CLOSED},
    SessionState.STREAMING: {SessionState.DRAINING, SessionState.CLOSED},
    SessionState.DRAINING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class SessionStateMachine:
    """Tracks the lifecycle of one session.

    Rejects invalid transitions and notifies listeners
    when state changes occur.
    """

    def __init__(self, session_id: str):
        """Initialize state machine.

        Args:
            session_id: Identifier used in log lines
        """
        self.session_id = session_id
        self._state = SessionState.STARTING
        self._listeners: list[Callable[[SessionState, SessionState], None]] = []

        logger.debug("state_machine_initialized", session_id=session_id, state=self._state.value)

    @property
    def state(self) -> SessionState:
        """Current state of the session."""
        return self._state

    def transition(self, new_state: SessionState) -> bool:
        """Attempt to transition to a new state.

        Args:
            new_state: Target state

        Returns:
            True if transition was successful, False otherwise
        """
        if new_state not in VALID_TRANSITIONS[self._state]:
            logger.warning(
                "invalid_state_transition",
                session_id=self.session_id,
                from_state=self._state.value,
                to_state=new_state.value,
            )
            return False

        old_state = self._state
        self._state = new_state

        logger.debug(
            "state_transition",
            session_id=self.session_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )

        for listener in self._listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error("state_listener_error", error=str(e))

        return True

    def add_listener(self, listener: Callable[[SessionState, SessionState], None]) -> None:
        """Add a state change listener.

        Args:
            listener: Callback function(old_state, new_state)
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[SessionState, SessionState], None]) -> None:
        """Remove a state change listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def is_closed(self) -> bool:
        return self._state == SessionState.CLOSED

    def is_streaming(self) -> bool:
        return self._state == SessionState.STREAMING

    def start_streaming(self) -> bool:
        """Identity exchanged, audio may flow."""
        return self.transition(SessionState.STREAMING)

    def drain(self) -> bool:
        """Stop streaming and begin the hangup."""
        return self.transition(SessionState.DRAINING)

    def close(self) -> bool:
        return self.transition(SessionState.CLOSED)
