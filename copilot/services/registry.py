"""
LiveCopilot — Run Registry

Maps run_id → coordinator, one per WebSocket connection.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from ..core.interfaces import LiveConnector
from .coordinator import CopilotRun, DualSessionCoordinator, SingleSessionCopilot

logger = logging.getLogger("copilot.registry")

MODES = {
    "dual": DualSessionCoordinator,
    "single": SingleSessionCopilot,
}


class RunRegistry:
    """Maps run_id → CopilotRun."""

    def __init__(self, connector_factory: Optional[Callable[[], LiveConnector]] = None) -> None:
        self._runs: Dict[str, CopilotRun] = {}
        # None → each run builds its own Gemini connector on start()
        self._connector_factory = connector_factory

    def create(self, run_id: str, mode: str = "dual", **callbacks: Any) -> CopilotRun:
        if run_id in self._runs:
            raise ValueError(f"Run '{run_id}' already exists")
        try:
            run_cls = MODES[mode]
        except KeyError:
            raise ValueError(f"Unknown mode '{mode}' (expected one of {sorted(MODES)})") from None

        connector = self._connector_factory() if self._connector_factory else None
        run = run_cls(run_id, connector=connector, **callbacks)
        self._runs[run_id] = run
        logger.info(f"RunRegistry: created {run_id} [{mode}] (total: {len(self._runs)})")
        return run

    async def stop_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        run = self._runs.pop(run_id, None)
        if run is None:
            return None
        summary = await run.stop()
        logger.info(f"RunRegistry: removed {run_id} (total: {len(self._runs)})")
        return summary

    def discard(self, run_id: str) -> Optional[CopilotRun]:
        """Forget a run that already tore itself down (fatal error)."""
        run = self._runs.pop(run_id, None)
        if run is not None:
            logger.info(f"RunRegistry: discarded failed run {run_id} (total: {len(self._runs)})")
        return run

    async def stop_all(self) -> None:
        for run_id in list(self._runs.keys()):
            await self.stop_run(run_id)

    def get(self, run_id: str) -> Optional[CopilotRun]:
        return self._runs.get(run_id)

    @property
    def active_count(self) -> int:
        return len(self._runs)

    @property
    def all_runs(self) -> Dict[str, CopilotRun]:
        return dict(self._runs)
