"""
LiveCopilot — State Machines

Two explicit state machines replace loose boolean flags:

  • TurnStateMachine — per-session turn lifecycle:
      IDLE → ACCUMULATING → IDLE, with AWAITING_RESPONSE while a requested
      turn (e.g. a queued reply) has been sent but no fragment has arrived,
      and INTERRUPTED while the remote has cut a turn whose text is retained.
  • StatusMachine — UI-facing AppStatus of one analysis run.

All transitions go through these classes so illegitimate states are
impossible and every transition is logged.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from .models import AppStatus

logger = logging.getLogger("copilot.state")


class TurnState(str, Enum):
    IDLE = "idle"                            # No open turn
    INTERRUPTED = "interrupted"              # Remote cut the turn, buffer retained
    ACCUMULATING = "accumulating"            # First fragment seen, buffer non-empty
    AWAITING_RESPONSE = "awaiting_response"  # Request sent, no fragment yet


# Legal turn transitions
_TURN_TRANSITIONS: Dict[TurnState, Set[TurnState]] = {
    TurnState.IDLE:              {TurnState.ACCUMULATING, TurnState.AWAITING_RESPONSE},
    TurnState.AWAITING_RESPONSE: {TurnState.ACCUMULATING, TurnState.IDLE},
    TurnState.ACCUMULATING:      {TurnState.IDLE, TurnState.INTERRUPTED, TurnState.AWAITING_RESPONSE},
    TurnState.INTERRUPTED:       {TurnState.ACCUMULATING, TurnState.IDLE, TurnState.AWAITING_RESPONSE},
}

# Legal status transitions. ERROR and IDLE are reachable from anywhere.
_STATUS_TRANSITIONS: Dict[AppStatus, Set[AppStatus]] = {
    AppStatus.IDLE:       {AppStatus.CAPTURING, AppStatus.ERROR},
    AppStatus.CAPTURING:  {AppStatus.CONNECTING, AppStatus.STOPPING, AppStatus.ERROR, AppStatus.IDLE},
    AppStatus.CONNECTING: {AppStatus.ANALYZING, AppStatus.STOPPING, AppStatus.ERROR, AppStatus.IDLE},
    AppStatus.ANALYZING:  {AppStatus.CONNECTING, AppStatus.STOPPING, AppStatus.ERROR, AppStatus.IDLE},
    AppStatus.STOPPING:   {AppStatus.IDLE, AppStatus.ERROR},
    AppStatus.ERROR:      {AppStatus.IDLE, AppStatus.CAPTURING, AppStatus.STOPPING},
}


class TurnStateMachine:
    """
    Enforces legal turn transitions.

    Usage:
        sm = TurnStateMachine("reply")
        sm.transition(TurnState.AWAITING_RESPONSE)   # request sent
        sm.transition(TurnState.ACCUMULATING)        # first fragment
        sm.transition(TurnState.IDLE)                # turn complete
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._state = TurnState.IDLE

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def awaiting_response(self) -> bool:
        return self._state == TurnState.AWAITING_RESPONSE

    def transition(self, target: TurnState) -> None:
        """Raises ValueError on illegal transitions."""
        if target == self._state:
            return
        if target not in _TURN_TRANSITIONS[self._state]:
            raise ValueError(
                f"Illegal turn transition: {self._state.value} → {target.value}"
            )
        logger.debug(f"[{self._name}] TURN: {self._state.value} → {target.value}")
        self._state = target

    def reset(self) -> None:
        self._state = TurnState.IDLE


class StatusMachine:
    """
    Tracks the AppStatus of a run and notifies a listener on each change.

    Illegal transitions raise ValueError; same-state transitions are no-ops.
    """

    def __init__(
        self,
        on_transition: Optional[Callable[[AppStatus, AppStatus, str], None]] = None,
    ) -> None:
        self._status = AppStatus.IDLE
        self._on_transition = on_transition
        self._history: List[Dict] = []
        self._entered_at = time.time()

    @property
    def status(self) -> AppStatus:
        return self._status

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    def transition(self, target: AppStatus, reason: str = "") -> None:
        if target == self._status:
            return  # Idempotent — no-op for same status

        allowed = _STATUS_TRANSITIONS.get(self._status, set())
        if target not in allowed:
            raise ValueError(
                f"Illegal status transition: {self._status.value} → {target.value}. "
                f"Allowed from {self._status.value}: {sorted(s.value for s in allowed)}. "
                f"Reason: {reason}"
            )

        prev = self._status
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._status = target
        self._entered_at = now

        logger.info(
            f"STATUS: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )

        if self._on_transition:
            try:
                self._on_transition(prev, target, reason)
            except Exception as e:
                logger.error(f"Status transition callback error: {e}")
