from __future__ import annotations

import pytest

from copilot.core.state_machine import TurnState
from copilot.processing.accumulator import InterruptPolicy, TurnAccumulator


def test_fragments_join_into_one_turn() -> None:
    acc = TurnAccumulator("t")

    assert acc.add_fragment("Hello") is True
    assert acc.add_fragment(" world") is False
    assert acc.turn_open

    assert acc.complete() == "Hello world"
    assert acc.state == TurnState.IDLE
    assert acc.buffer == ""
    assert acc.snapshot().turns_emitted == 1


def test_completed_text_is_trimmed() -> None:
    acc = TurnAccumulator()
    acc.add_fragment("  spaced out \n")
    assert acc.complete() == "spaced out"


def test_whitespace_only_turn_emits_nothing() -> None:
    acc = TurnAccumulator()
    acc.add_fragment("   ")
    assert acc.complete() is None
    assert acc.state == TurnState.IDLE
    assert acc.snapshot().turns_emitted == 0


def test_turn_complete_without_fragments_is_empty() -> None:
    acc = TurnAccumulator()
    assert acc.complete() is None
    assert acc.state == TurnState.IDLE


def test_empty_fragment_does_not_open_a_turn() -> None:
    acc = TurnAccumulator()
    assert acc.add_fragment("") is False
    assert acc.state == TurnState.IDLE


def test_interrupted_turn_keeps_partial_text_by_default() -> None:
    acc = TurnAccumulator("t")
    acc.add_fragment("partial te")
    acc.interrupt()

    assert acc.state == TurnState.INTERRUPTED
    assert acc.buffer == "partial te"

    # Resuming after an interruption is a fresh turn-start notification
    assert acc.add_fragment("xt") is True
    assert acc.complete() == "partial text"


def test_interrupted_turn_completed_directly_emits_retained_text() -> None:
    acc = TurnAccumulator()
    acc.add_fragment("cut short")
    acc.interrupt()
    assert acc.complete() == "cut short"


def test_discard_policy_drops_partial_text() -> None:
    acc = TurnAccumulator("t", interrupt_policy=InterruptPolicy.DISCARD)
    acc.add_fragment("partial te")
    acc.interrupt()

    assert acc.state == TurnState.IDLE
    assert acc.buffer == ""

    acc.add_fragment("fresh")
    assert acc.complete() == "fresh"


def test_interrupt_outside_a_turn_is_ignored() -> None:
    acc = TurnAccumulator()
    acc.interrupt()
    assert acc.state == TurnState.IDLE


def test_expect_response_then_first_fragment_starts_turn() -> None:
    acc = TurnAccumulator()
    acc.expect_response()
    assert acc.awaiting_response
    assert not acc.turn_open

    assert acc.add_fragment("answer") is True
    assert not acc.awaiting_response
    assert acc.complete() == "answer"


def test_clear_drops_buffer_and_returns_to_idle() -> None:
    acc = TurnAccumulator()
    acc.add_fragment("stale")
    acc.clear()
    assert acc.buffer == ""
    assert acc.state == TurnState.IDLE


def test_policy_accepts_string_value() -> None:
    acc = TurnAccumulator(interrupt_policy="discard")
    acc.add_fragment("x")
    acc.interrupt()
    assert acc.buffer == ""


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        TurnAccumulator(interrupt_policy="sometimes")
