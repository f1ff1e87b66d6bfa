"""Broadcast session state machine for managing state transitions."""

from smc_live.schemas import BroadcastStatus


class SessionStateMachine:
    """State machine for managing broadcast session state transitions.

    State flow with triggers:
    - NOT_STARTED -> PENDING (start form submitted, stream key issued)
    - PENDING -> LIVE (backend promotes: on configure, or on RTMP publish) | ENDED | CANCELLED
    - LIVE -> ENDED (operator stop)
    - ENDED -> PENDING (start naming the ended sermon; a fresh stream key is issued)
    - CANCELLED is terminal

    The encoder connecting is never observed directly by the operator console,
    so LIVE means "configuration complete and possibly live".
    """

    TRANSITIONS: dict[BroadcastStatus, set[BroadcastStatus]] = {
        BroadcastStatus.NOT_STARTED: {BroadcastStatus.PENDING},
        BroadcastStatus.PENDING: {
            BroadcastStatus.LIVE,
            BroadcastStatus.ENDED,
            BroadcastStatus.CANCELLED,
        },
        BroadcastStatus.LIVE: {BroadcastStatus.ENDED},
        BroadcastStatus.ENDED: {BroadcastStatus.PENDING},
        BroadcastStatus.CANCELLED: set(),
    }

    TERMINAL_STATES: set[BroadcastStatus] = {BroadcastStatus.CANCELLED}

    CONFIGURABLE_STATES: set[BroadcastStatus] = {BroadcastStatus.NOT_STARTED, BroadcastStatus.ENDED}
    STOPPABLE_STATES: set[BroadcastStatus] = {BroadcastStatus.PENDING, BroadcastStatus.LIVE}

    @classmethod
    def can_transition(cls, current: BroadcastStatus, new: BroadcastStatus) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current session state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: BroadcastStatus) -> bool:
        """Check if a state is terminal (no further transitions allowed)."""
        return state in cls.TERMINAL_STATES

    @classmethod
    def is_active(cls, state: BroadcastStatus) -> bool:
        """Check if a state holds the broadcast (PENDING or LIVE)."""
        return state in cls.STOPPABLE_STATES

    @classmethod
    def get_valid_transitions(cls, state: BroadcastStatus) -> set[BroadcastStatus]:
        """Get all valid transitions from a given state."""
        return cls.TRANSITIONS.get(state, set())

    @classmethod
    def get_valid_sources(cls, target: BroadcastStatus) -> set[BroadcastStatus]:
        """Get all states that can transition to the target state."""
        return {state for state, targets in cls.TRANSITIONS.items() if target in targets}
