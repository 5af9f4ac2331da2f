"""
LiveCopilot — Turn Accumulator

================================================================================
REASSEMBLES STREAMED FRAGMENTS INTO COMPLETE TURNS
================================================================================

The remote model streams a reply as many small text fragments followed by a
turn-complete boundary. The accumulator owns the per-session buffer and the
turn state machine:

  IDLE ──fragment──▶ ACCUMULATING ──turn_complete──▶ IDLE (emit trimmed text)
                        │    ▲
               interrupted   fragment (fresh turn-start notification)
                        ▼    │
                     INTERRUPTED ──turn_complete──▶ IDLE (emit retained text)

With the RETAIN policy an interruption keeps the text already received so a
turn the model resumes is emitted whole. DISCARD drops it instead.

AWAITING_RESPONSE marks a session that has sent a request and is waiting for
the first fragment of the answer.

The accumulator is synchronous and side-effect free apart from its own state;
the owning session fires the notifications from the returned values.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..core.state_machine import TurnState, TurnStateMachine

logger = logging.getLogger("copilot.turns")


class InterruptPolicy(str, Enum):
    RETAIN = "retain"
    DISCARD = "discard"


@dataclass(frozen=True)
class AccumulatorSnapshot:
    state: str
    buffered_chars: int
    turns_emitted: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "buffered_chars": self.buffered_chars,
            "turns_emitted": self.turns_emitted,
        }


class TurnAccumulator:
    """
    Per-session turn buffer.

    Usage:
        acc = TurnAccumulator("reply")
        started = acc.add_fragment("Hello")   # True — first fragment of a turn
        acc.add_fragment(" world")            # False
        acc.complete()                        # "Hello world"
    """

    def __init__(
        self,
        name: str = "",
        interrupt_policy: InterruptPolicy = InterruptPolicy.RETAIN,
    ) -> None:
        self._name = name
        self._policy = InterruptPolicy(interrupt_policy)
        self._sm = TurnStateMachine(name)
        self._buffer = ""
        self._turns_emitted = 0

    @property
    def state(self) -> TurnState:
        return self._sm.state

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def turn_open(self) -> bool:
        """True between the first fragment of a turn and its completion."""
        return self._sm.state in (TurnState.ACCUMULATING, TurnState.INTERRUPTED)

    @property
    def awaiting_response(self) -> bool:
        return self._sm.awaiting_response

    def add_fragment(self, text: str) -> bool:
        """
        Append one fragment. Returns True when this fragment starts a turn
        (or resumes one after an interruption), i.e. when the owner should fire
        its one-shot turn-started notification.
        """
        if not text:
            return False
        started = self._sm.state != TurnState.ACCUMULATING
        if started:
            self._sm.transition(TurnState.ACCUMULATING)
        self._buffer += text
        return started

    def complete(self) -> Optional[str]:
        """
        Close the current turn. Returns the trimmed text, or None when the
        turn carried no visible text. The buffer always resets.
        """
        text = self._buffer.strip()
        self._buffer = ""
        self._sm.transition(TurnState.IDLE)
        if not text:
            return None
        self._turns_emitted += 1
        return text

    def interrupt(self) -> None:
        if self._sm.state != TurnState.ACCUMULATING:
            return
        if self._policy == InterruptPolicy.DISCARD:
            logger.info(f"[{self._name}] Interrupted — discarding {len(self._buffer)} chars")
            self._buffer = ""
            self._sm.transition(TurnState.IDLE)
            return
        logger.info(f"[{self._name}] Interrupted — retaining {len(self._buffer)} chars")
        self._sm.transition(TurnState.INTERRUPTED)

    def expect_response(self) -> None:
        """Mark that a request has been sent and its answer is pending."""
        if self._sm.state == TurnState.IDLE:
            self._sm.transition(TurnState.AWAITING_RESPONSE)

    def clear(self) -> None:
        """Drop any partial text and return to IDLE."""
        if self._buffer:
            logger.info(f"[{self._name}] Clearing {len(self._buffer)} buffered chars")
        self._buffer = ""
        self._sm.reset()

    def snapshot(self) -> AccumulatorSnapshot:
        return AccumulatorSnapshot(
            state=self._sm.state.value,
            buffered_chars=len(self._buffer),
            turns_emitted=self._turns_emitted,
        )
