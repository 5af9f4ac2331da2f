"""
LiveCopilot — Reconnection Controller

Keeps a session usable across transient network loss:

  • bounded retries (default 3) with exponential backoff
      delay = min(base * 2^(attempt-1), max)   →  1s, 2s, 4s, capped at 5s
  • sole owner of the attempt counter and the resumption handle
  • the handle is persisted through a ResumptionStore so a restarted process
    can resume the remote conversation

The controller only does bookkeeping and timing; the owning LiveSession
decides what a reconnect attempt actually does.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from ..core.config import session_cfg
from ..core.storage import ResumptionStore

logger = logging.getLogger("copilot.reconnect")

SleepFn = Callable[[float], Awaitable[None]]


def backoff_delay(
    attempt: int,
    base: float = session_cfg.reconnect_base_delay,
    cap: float = session_cfg.reconnect_max_delay,
) -> float:
    """Delay in seconds before reconnect attempt `attempt` (1-based)."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(base * (2 ** (attempt - 1)), cap)


class ReconnectionController:
    """
    Attempt counter, backoff timer and resumption handle for one session.

    Lifecycle per failure cycle:
        if controller.exhausted: give up (controller.give_up())
        delay = controller.begin_attempt()
        controller.schedule(delay, reconnect_coro_fn)
        ... reconnect succeeds → controller.reset()
    """

    def __init__(
        self,
        name: str,
        store: ResumptionStore,
        max_attempts: int = session_cfg.max_reconnect_attempts,
        base_delay: float = session_cfg.reconnect_base_delay,
        max_delay: float = session_cfg.reconnect_max_delay,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._name = name
        self._store = store
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

        self._attempts = 0
        self._task: Optional[asyncio.Task] = None
        self.delays: List[float] = []

    # ── Attempt bookkeeping ─────────────────────────────────────────────

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self._max_attempts

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def begin_attempt(self) -> float:
        """Count one more attempt and return its backoff delay (seconds)."""
        self._attempts += 1
        delay = backoff_delay(self._attempts, self._base_delay, self._max_delay)
        self.delays.append(delay)
        logger.info(
            f"[{self._name}] Reconnection attempt {self._attempts}/{self._max_attempts} "
            f"in {int(delay * 1000)}ms..."
        )
        return delay

    def reset(self) -> None:
        """Called after a successful connect."""
        if self._attempts:
            logger.info(f"[{self._name}] Reconnected after {self._attempts} attempt(s)")
        self._attempts = 0

    def give_up(self) -> None:
        """Max attempts exceeded: the handle is assumed unrecoverable."""
        logger.error(f"[{self._name}] Max reconnection attempts ({self._max_attempts}) reached.")
        self.clear_handle()

    # ── Timer ───────────────────────────────────────────────────────────

    def schedule(self, delay: float, reconnect: Callable[[], Awaitable[None]]) -> None:
        self.cancel()
        self._task = asyncio.create_task(
            self._run(delay, reconnect), name=f"reconnect-{self._name}"
        )

    async def _run(self, delay: float, reconnect: Callable[[], Awaitable[None]]) -> None:
        await self._sleep(delay)
        # Detach first: a failed attempt schedules the next timer from inside this task.
        self._task = None
        await reconnect()

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info(f"[{self._name}] Pending reconnection cancelled")
        self._task = None

    # ── Resumption handle ───────────────────────────────────────────────

    @property
    def handle(self) -> Optional[str]:
        return self._store.load()

    def update_handle(self, handle: str) -> None:
        if handle:
            self._store.save(handle)

    def clear_handle(self) -> None:
        self._store.clear()
