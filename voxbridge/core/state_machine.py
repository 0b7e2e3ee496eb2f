"""Call session state machine for the orchestrator."""

from enum import Enum
from typing import Callable

from voxbridge.utils.logging import get_logger

logger = get_logger(__name__)


class CallState(Enum):
    """States of an orchestrated call."""

    INITIATED = "initiated"  # Telephony leg reported, nothing sent yet
    CONVERSING = "conversing"  # Voice AI owns the call
    TRANSFER_PENDING = "transfer_pending"  # Tool call acknowledged, redirect scheduled
    TRANSFERRING = "transferring"  # Dial to the human agent issued
    TRANSFER_ACTIVE = "transfer_active"  # Human agent answered
    WRAPPING_UP = "wrapping_up"  # Final speech/hangup issued
    CLOSED = "closed"  # Terminal, no further commands


# Valid state transitions. Forward only; CLOSED is reachable from anywhere
# and leads nowhere.
VALID_TRANSITIONS: dict[CallState, set[CallState]] = {
    CallState.INITIATED: {CallState.CONVERSING, CallState.CLOSED},
    CallState.CONVERSING: {
        CallState.TRANSFER_PENDING,
        CallState.WRAPPING_UP,
        CallState.CLOSED,
    },
    CallState.TRANSFER_PENDING: {CallState.TRANSFERRING, CallState.CLOSED},
    CallState.TRANSFERRING: {
        CallState.TRANSFER_ACTIVE,
        CallState.WRAPPING_UP,
        CallState.CLOSED,
    },
    CallState.TRANSFER_ACTIVE: {CallState.WRAPPING_UP, CallState.CLOSED},
    CallState.WRAPPING_UP: {CallState.CLOSED},
    CallState.CLOSED: set(),
}

TRANSFER_STATES = frozenset(
    {CallState.TRANSFER_PENDING, CallState.TRANSFERRING, CallState.TRANSFER_ACTIVE}
)


class CallStateMachine:
    """Manages state transitions for an orchestrated call.

    Rejects transitions that would move the call backwards and notifies
    listeners when state changes occur.
    """

    def __init__(self, call_id: str):
        """Initialize state machine.

        Args:
            call_id: Unique identifier for the call
        """
        self.call_id = call_id
        self._state = CallState.INITIATED
        self._listeners: list[Callable[[CallState, CallState], None]] = []

        logger.debug("state_machine_initialized", call_id=call_id, state=self._state.value)

    @property
    def state(self) -> CallState:
        """Current state of the call."""
        return self._state

    def transition(self, new_state: CallState) -> bool:
        """Attempt to transition to a new state.

        Args:
            new_state: Target state

        Returns:
            True if transition was successful, False otherwise
        """
        if new_state not in VALID_TRANSITIONS[self._state]:
            logger.warning(
                "invalid_state_transition",
                call_id=self.call_id,
                from_state=self._state.value,
                to_state=new_state.value,
            )
            return False

        old_state = self._state
        self._state = new_state

        logger.info(
            "state_transition",
            call_id=self.call_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )

        for listener in self._listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error("state_listener_error", call_id=self.call_id, error=str(e))

        return True

    def add_listener(self, listener: Callable[[CallState, CallState], None]) -> None:
        """Add a state change listener.

        Args:
            listener: Callback function(old_state, new_state)
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[CallState, CallState], None]) -> None:
        """Remove a state change listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def is_closed(self) -> bool:
        return self._state == CallState.CLOSED

    def in_transfer(self) -> bool:
        """Check if an escalation to a human agent is in flight."""
        return self._state in TRANSFER_STATES

    def close(self) -> bool:
        """Close the call from whatever state it is in.

        Returns False when the call was already closed.
        """
        if self._state == CallState.CLOSED:
            return False
        return self.transition(CallState.CLOSED)
