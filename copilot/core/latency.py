"""
LiveCopilot — Structured Latency Tracer

Records wall-clock timestamps for critical milestones of one run:
  connect_started → connected → first_transcript → first_reply

Each milestone is stamped once per run; deltas are reported in the run
snapshot served by GET /runs/{run_id}.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("copilot.latency")

_MILESTONES = ("connect_started", "connected", "first_transcript", "first_reply")


@dataclass
class LatencyTrace:
    """Record of run latency milestones (wall-clock seconds)."""

    run_id: str = ""

    connect_started: float = 0.0
    connected: float = 0.0
    first_transcript: float = 0.0
    first_reply: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"run_id": self.run_id}
        # Only include milestones that have been recorded
        for name in _MILESTONES:
            ts = getattr(self, name)
            if ts > 0:
                d[name] = ts
        d["deltas"] = self.deltas()
        return d

    def deltas(self) -> Dict[str, Optional[float]]:
        """Compute latency deltas between milestones (milliseconds)."""
        def _delta(a: float, b: float) -> Optional[float]:
            if a > 0 and b > 0:
                return round((b - a) * 1000, 1)
            return None

        return {
            "connect_ms": _delta(self.connect_started, self.connected),
            "connected_to_first_transcript_ms": _delta(self.connected, self.first_transcript),
            "transcript_to_first_reply_ms": _delta(self.first_transcript, self.first_reply),
            "connect_to_first_reply_ms": _delta(self.connect_started, self.first_reply),
        }


class LatencyTracer:
    """
    Mutable tracer that records milestones once and logs them.

    Usage:
        tracer = LatencyTracer("run-abc")
        tracer.mark("connect_started")
        tracer.mark("connected")
    """

    def __init__(self, run_id: str) -> None:
        self._trace = LatencyTrace(run_id=run_id)

    @property
    def trace(self) -> LatencyTrace:
        return self._trace

    def mark(self, milestone: str) -> None:
        if milestone not in _MILESTONES:
            raise ValueError(f"Unknown latency milestone: {milestone}")
        if getattr(self._trace, milestone) > 0:
            return  # Already marked
        setattr(self._trace, milestone, time.time())
        logger.info(f"[{self._trace.run_id}] LATENCY {milestone} {self._trace.deltas()}")

    def reset(self) -> None:
        self._trace = LatencyTrace(run_id=self._trace.run_id)

    def summary(self) -> Dict[str, Any]:
        return self._trace.to_dict()
