from __future__ import annotations

import asyncio

import numpy as np
import pytest

from copilot.core.errors import LiveConnectionError
from copilot.core.models import AppStatus, SessionRole
from copilot.core.storage import MemoryResumptionStore
from copilot.local_capture import ConsoleDisplay, parse_args, run_local
from copilot.services.coordinator import DualSessionCoordinator
from tests.utils import FakeConnector, no_sleep


def _copilot(connector: FakeConnector, display=None) -> DualSessionCoordinator:
    return DualSessionCoordinator(
        "local-1",
        connector=connector,
        store_factory=lambda role: MemoryResumptionStore(),
        session_options={"sleep": no_sleep},
        display=display,
    )


async def _iterate(items):
    for item in items:
        yield item
        await asyncio.sleep(0)


async def _endless(item):
    while True:
        yield item
        await asyncio.sleep(0)


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.mode == "dual"
    assert args.video == "screen"
    assert args.no_audio is False


def test_parse_args_rejects_unknown_mode() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--mode", "triple"])


@pytest.mark.asyncio
async def test_sources_are_pumped_into_the_run(connector) -> None:
    copilot = _copilot(connector)
    frames = [np.zeros((8, 8, 3), dtype=np.uint8) for _ in range(3)]
    samples = [np.zeros(160, dtype=np.int16) for _ in range(2)]

    summary = await run_local(copilot, _iterate(frames), _iterate(samples), fps=0)

    assert summary["status"] == "idle"
    assert summary["telemetry"]["frames_sent"] == 3
    assert summary["telemetry"]["audio_chunks_sent"] == 2
    transcription = connector.for_role(SessionRole.TRANSCRIPTION)[0]
    assert transcription.closed


@pytest.mark.asyncio
async def test_video_only_run(connector) -> None:
    copilot = _copilot(connector)

    summary = await run_local(copilot, _iterate(["AAAA", "BBBB"]), None, fps=0)

    assert summary["telemetry"]["frames_sent"] == 2
    assert summary["telemetry"]["audio_chunks_sent"] == 0


@pytest.mark.asyncio
async def test_failed_start_skips_capture() -> None:
    connector = FakeConnector(failures=[LiveConnectionError("denied")])
    copilot = _copilot(connector)

    summary = await run_local(copilot, _iterate(["AAAA"]), None, fps=0)

    assert summary["status"] == "error"
    assert summary["telemetry"]["frames_sent"] == 0


@pytest.mark.asyncio
async def test_stop_event_ends_endless_sources(connector) -> None:
    display = ConsoleDisplay()
    copilot = _copilot(connector, display=display)
    asyncio.get_running_loop().call_later(0.05, display.stopped.set)

    summary = await run_local(
        copilot, _endless("AAAA"), None, fps=0, stop_event=display.stopped
    )

    assert summary["status"] == "idle"
    assert summary["telemetry"]["frames_sent"] > 0


def test_console_display_stops_on_error() -> None:
    display = ConsoleDisplay()
    display.on_status_change(AppStatus.ANALYZING)
    assert not display.stopped.is_set()
    display.on_status_change(AppStatus.ERROR)
    assert display.stopped.is_set()
