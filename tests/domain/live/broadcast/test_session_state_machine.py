"""Tests for the broadcast session state machine."""

import pytest

from smc_live.domain.live.broadcast.session_state_machine import SessionStateMachine
from smc_live.schemas import BroadcastStatus

S = BroadcastStatus

VALID = [
    (S.NOT_STARTED, S.PENDING),
    (S.PENDING, S.LIVE),
    (S.PENDING, S.ENDED),
    (S.PENDING, S.CANCELLED),
    (S.LIVE, S.ENDED),
    (S.ENDED, S.PENDING),
]


class TestTransitions:
    @pytest.mark.parametrize("current,new", VALID)
    def test_valid_transitions(self, current, new):
        assert SessionStateMachine.can_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [(a, b) for a in S for b in S if (a, b) not in VALID],
    )
    def test_every_other_transition_rejected(self, current, new):
        assert not SessionStateMachine.can_transition(current, new)

    def test_live_cannot_be_cancelled(self):
        assert not SessionStateMachine.can_transition(S.LIVE, S.CANCELLED)

    def test_not_started_cannot_jump_to_live(self):
        assert not SessionStateMachine.can_transition(S.NOT_STARTED, S.LIVE)


class TestStateQueries:
    def test_only_cancelled_is_terminal(self):
        assert [s for s in S if SessionStateMachine.is_terminal(s)] == [S.CANCELLED]
        assert SessionStateMachine.get_valid_transitions(S.CANCELLED) == set()

    def test_active_states(self):
        assert SessionStateMachine.is_active(S.PENDING)
        assert SessionStateMachine.is_active(S.LIVE)
        assert not SessionStateMachine.is_active(S.ENDED)
        assert set(BroadcastStatus.active_states()) == SessionStateMachine.STOPPABLE_STATES

    def test_valid_sources(self):
        assert SessionStateMachine.get_valid_sources(S.ENDED) == {S.PENDING, S.LIVE}
        assert SessionStateMachine.get_valid_sources(S.PENDING) == SessionStateMachine.CONFIGURABLE_STATES
        assert SessionStateMachine.get_valid_sources(S.NOT_STARTED) == set()
