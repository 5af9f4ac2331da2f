from __future__ import annotations

import pytest

from copilot.core.storage import MemoryResumptionStore
from copilot.services.reconnect import ReconnectionController, backoff_delay

from tests.utils import settle


def test_backoff_sequence_is_capped() -> None:
    assert [backoff_delay(n, 1.0, 5.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_rejects_zero_attempt() -> None:
    with pytest.raises(ValueError):
        backoff_delay(0)


def test_attempt_counter_and_exhaustion() -> None:
    ctl = ReconnectionController("t", MemoryResumptionStore(), max_attempts=3)

    delays = [ctl.begin_attempt() for _ in range(3)]

    assert delays == [1.0, 2.0, 4.0]
    assert ctl.delays == [1.0, 2.0, 4.0]
    assert ctl.exhausted

    ctl.reset()
    assert ctl.attempts == 0
    assert not ctl.exhausted


def test_give_up_clears_handle() -> None:
    store = MemoryResumptionStore("abc123")
    ctl = ReconnectionController("t", store)
    assert ctl.handle == "abc123"

    ctl.give_up()

    assert ctl.handle is None
    assert store.load() is None


def test_update_handle_overwrites() -> None:
    ctl = ReconnectionController("t", MemoryResumptionStore("old"))
    ctl.update_handle("new")
    ctl.update_handle("")
    assert ctl.handle == "new"


@pytest.mark.asyncio
async def test_schedule_runs_reconnect_after_sleep() -> None:
    slept = []
    ran = []

    async def fake_sleep(delay: float) -> None:
        slept.append(delay)

    async def reconnect() -> None:
        ran.append(True)

    ctl = ReconnectionController("t", MemoryResumptionStore(), sleep=fake_sleep)
    ctl.schedule(2.0, reconnect)
    assert ctl.pending
    await settle()

    assert slept == [2.0]
    assert ran == [True]
    assert not ctl.pending


@pytest.mark.asyncio
async def test_cancel_prevents_reconnect() -> None:
    ran = []

    async def reconnect() -> None:
        ran.append(True)

    ctl = ReconnectionController("t", MemoryResumptionStore())
    ctl.schedule(10.0, reconnect)
    ctl.cancel()
    await settle()

    assert ran == []
    assert not ctl.pending
