from __future__ import annotations

import pytest

from copilot.core.models import AppStatus
from copilot.core.state_machine import StatusMachine, TurnState, TurnStateMachine


def test_turn_cycle() -> None:
    sm = TurnStateMachine("t")
    sm.transition(TurnState.AWAITING_RESPONSE)
    assert sm.awaiting_response
    sm.transition(TurnState.ACCUMULATING)
    sm.transition(TurnState.INTERRUPTED)
    sm.transition(TurnState.ACCUMULATING)
    sm.transition(TurnState.IDLE)
    assert sm.state == TurnState.IDLE


def test_idle_cannot_be_interrupted() -> None:
    sm = TurnStateMachine()
    with pytest.raises(ValueError):
        sm.transition(TurnState.INTERRUPTED)


def test_status_happy_path_is_recorded() -> None:
    seen = []
    sm = StatusMachine(on_transition=lambda prev, new, reason: seen.append((prev, new)))

    for status in (AppStatus.CAPTURING, AppStatus.CONNECTING, AppStatus.ANALYZING,
                   AppStatus.STOPPING, AppStatus.IDLE):
        sm.transition(status, "test")

    assert sm.status == AppStatus.IDLE
    assert [h["to"] for h in sm.history] == [
        "capturing", "connecting", "analyzing", "stopping", "idle",
    ]
    assert seen[0] == (AppStatus.IDLE, AppStatus.CAPTURING)


def test_same_status_is_a_noop() -> None:
    sm = StatusMachine()
    sm.transition(AppStatus.CAPTURING)
    sm.transition(AppStatus.CAPTURING)
    assert len(sm.history) == 1


def test_illegal_status_transition_raises() -> None:
    sm = StatusMachine()
    with pytest.raises(ValueError):
        sm.transition(AppStatus.ANALYZING)


def test_any_active_status_can_fail() -> None:
    for path in (
        [AppStatus.CAPTURING],
        [AppStatus.CAPTURING, AppStatus.CONNECTING],
        [AppStatus.CAPTURING, AppStatus.CONNECTING, AppStatus.ANALYZING],
    ):
        sm = StatusMachine()
        for status in path:
            sm.transition(status)
        sm.transition(AppStatus.ERROR)
        assert sm.status == AppStatus.ERROR


def test_listener_errors_do_not_break_transitions() -> None:
    def boom(prev, new, reason):
        raise RuntimeError("listener failed")

    sm = StatusMachine(on_transition=boom)
    sm.transition(AppStatus.CAPTURING)
    assert sm.status == AppStatus.CAPTURING
