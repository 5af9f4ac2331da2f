from __future__ import annotations

import pytest

from copilot.core.errors import LiveConnectionError, is_handle_invalid
from copilot.core.latency import LatencyTracer


@pytest.mark.parametrize(
    "reason",
    [
        "Session handle not found",
        "session not found",
        "resumption handle expired",
        "Invalid resumption handle",
        "invalid handle supplied",
    ],
)
def test_handle_invalid_reasons(reason: str) -> None:
    assert is_handle_invalid(reason)
    assert LiveConnectionError(reason).is_handle_invalid


@pytest.mark.parametrize("reason", ["", "network lost", "model not found", "deadline expired"])
def test_other_reasons_keep_the_handle(reason: str) -> None:
    assert not is_handle_invalid(reason)


def test_live_connection_error_is_a_connection_error() -> None:
    err = LiveConnectionError("refused")
    assert isinstance(err, ConnectionError)
    assert err.message == "refused"


def test_milestones_are_marked_once() -> None:
    tracer = LatencyTracer("run")
    tracer.mark("connect_started")
    first = tracer.trace.connect_started
    tracer.mark("connect_started")

    assert tracer.trace.connect_started == first
    assert tracer.summary()["deltas"]["connect_ms"] is None


def test_unknown_milestone_is_rejected() -> None:
    with pytest.raises(ValueError):
        LatencyTracer("run").mark("first_frame")


def test_reset_clears_milestones() -> None:
    tracer = LatencyTracer("run")
    tracer.mark("connected")
    tracer.reset()
    assert "connected" not in tracer.summary()
