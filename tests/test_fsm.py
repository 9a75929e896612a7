"""
tests/test_fsm.py — pytest unit tests for gazequest.core.fsm.StateMachine.

Uses the dwell transition map as the reference machine.
No external dependencies beyond the project source.
"""

from __future__ import annotations

import pytest

from gazequest.acquisition.dwell import DwellState
from gazequest.core.errors import InvalidTransitionError
from gazequest.core.fsm import StateMachine


# ──────────────────────────────────────────────────────────────
# Transition map mirror (must stay in sync with acquisition/dwell.py)
# ──────────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[DwellState, tuple[DwellState, ...]] = {
    DwellState.IDLE: (DwellState.HOVERING,),
    DwellState.HOVERING: (DwellState.COMMITTING, DwellState.IDLE),
    DwellState.COMMITTING: (DwellState.ACTIVATED, DwellState.IDLE),
    DwellState.ACTIVATED: (DwellState.IDLE,),
}

_PATHS: dict[DwellState, list[DwellState]] = {
    DwellState.IDLE: [],
    DwellState.HOVERING: [DwellState.HOVERING],
    DwellState.COMMITTING: [DwellState.HOVERING, DwellState.COMMITTING],
    DwellState.ACTIVATED: [DwellState.HOVERING, DwellState.COMMITTING, DwellState.ACTIVATED],
}


def _force_state(fsm: StateMachine, target: DwellState) -> None:
    fsm.reset()
    for step in _PATHS[target]:
        fsm.transition(step, reason="_force_state")


# ──────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture()
def fsm() -> StateMachine[DwellState]:
    return StateMachine("dwell:test", DwellState.IDLE, VALID_TRANSITIONS)


@pytest.fixture()
def fsm_with_callbacks() -> tuple[StateMachine[DwellState], list[tuple]]:
    log: list[tuple[DwellState, DwellState, str]] = []

    def _cb(from_: DwellState, to_: DwellState, reason: str) -> None:
        log.append((from_, to_, reason))

    return StateMachine("dwell:test", DwellState.IDLE, VALID_TRANSITIONS, on_transition=_cb), log


# ──────────────────────────────────────────────────────────────
# Valid transitions
# ──────────────────────────────────────────────────────────────

class TestValidTransitions:
    def test_every_valid_edge(self, fsm: StateMachine) -> None:
        tested = 0
        for from_state, targets in VALID_TRANSITIONS.items():
            for to_state in targets:
                _force_state(fsm, from_state)
                fsm.transition(to_state, reason="test_valid")
                assert fsm.current_state is to_state
                tested += 1
        assert tested == sum(len(v) for v in VALID_TRANSITIONS.values())

    def test_initial_state(self, fsm: StateMachine) -> None:
        assert fsm.current_state is DwellState.IDLE

    def test_external_callback_called(self, fsm_with_callbacks) -> None:
        fsm, log = fsm_with_callbacks
        fsm.transition(DwellState.HOVERING, reason="cb_test")
        assert log == [(DwellState.IDLE, DwellState.HOVERING, "cb_test")]

    def test_callback_exception_does_not_block_transition(self) -> None:
        def _boom(*_args) -> None:
            raise RuntimeError("boom")

        fsm = StateMachine("x", DwellState.IDLE, VALID_TRANSITIONS, on_transition=_boom)
        fsm.transition(DwellState.HOVERING)
        assert fsm.current_state is DwellState.HOVERING

    def test_can_transition(self, fsm: StateMachine) -> None:
        assert fsm.can_transition(DwellState.HOVERING) is True
        assert fsm.can_transition(DwellState.ACTIVATED) is False


# ──────────────────────────────────────────────────────────────
# Invalid transitions
# ──────────────────────────────────────────────────────────────

class TestInvalidTransitions:
    def test_every_invalid_edge_raises(self, fsm: StateMachine) -> None:
        for from_state, targets in VALID_TRANSITIONS.items():
            for to_state in DwellState:
                if to_state in targets:
                    continue
                _force_state(fsm, from_state)
                with pytest.raises(InvalidTransitionError):
                    fsm.transition(to_state, reason="test_invalid")
                assert fsm.current_state is from_state

    def test_error_carries_states(self, fsm: StateMachine) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            fsm.transition(DwellState.ACTIVATED, reason="skip")
        assert exc_info.value.from_state == "IDLE"
        assert exc_info.value.to_state == "ACTIVATED"

    def test_invalid_transition_is_runtime_error(self, fsm: StateMachine) -> None:
        with pytest.raises(RuntimeError):
            fsm.transition(DwellState.ACTIVATED)


# ──────────────────────────────────────────────────────────────
# Reset and history
# ──────────────────────────────────────────────────────────────

class TestResetAndHistory:
    def test_reset_from_any_state(self, fsm: StateMachine) -> None:
        for state in DwellState:
            _force_state(fsm, state)
            fsm.reset()
            assert fsm.current_state is DwellState.IDLE

    def test_reset_in_initial_state_records_nothing(self, fsm: StateMachine) -> None:
        fsm.reset()
        assert fsm.get_history() == []

    def test_history_records_transitions(self) -> None:
        clock = iter([10.0, 20.0])
        fsm = StateMachine("x", DwellState.IDLE, VALID_TRANSITIONS, clock=lambda: next(clock))
        fsm.transition(DwellState.HOVERING, reason="enter")
        fsm.transition(DwellState.IDLE, reason="leave")
        history = fsm.get_history()
        assert [(h["from"], h["to"], h["reason"]) for h in history] == [
            ("IDLE", "HOVERING", "enter"),
            ("HOVERING", "IDLE", "leave"),
        ]
        assert [h["timestamp_ms"] for h in history] == [10.0, 20.0]

    def test_history_bounded(self, fsm: StateMachine) -> None:
        for _ in range(40):
            fsm.transition(DwellState.HOVERING)
            fsm.transition(DwellState.IDLE)
        assert len(fsm.get_history()) == 50

    def test_repr_mentions_last_transition(self, fsm: StateMachine) -> None:
        fsm.transition(DwellState.HOVERING)
        assert "IDLE→HOVERING" in repr(fsm)
