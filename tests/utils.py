from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from copilot.core.errors import LiveConnectionError
from copilot.core.models import ConnectParams, EventKind, LiveEvent


class FakeConnection:
    """In-memory LiveConnection: records sends, lets tests inject events."""

    def __init__(self, params: ConnectParams, on_event) -> None:
        self.params = params
        self.on_event = on_event
        self.sent_audio: List[tuple] = []
        self.sent_video: List[str] = []
        self.sent_text: List[str] = []
        self.audio_ended = 0
        self.close_calls = 0
        self.fail_sends = False
        # Yield to the loop inside send_audio, like a real socket write
        self.suspend_sends = False

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def send_audio(self, data: str, mime_type: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is closed")
        if self.suspend_sends:
            await asyncio.sleep(0)
        self.sent_audio.append((data, mime_type))

    async def send_video(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is closed")
        self.sent_video.append(data)

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is closed")
        self.sent_text.append(text)

    async def end_audio_stream(self) -> None:
        self.audio_ended += 1

    async def close(self) -> None:
        self.close_calls += 1

    # ── Event injection ──

    async def emit(self, event: LiveEvent) -> None:
        await self.on_event(event)

    async def fragment(self, text: str) -> None:
        await self.emit(LiveEvent.content(text))

    async def turn_complete(self) -> None:
        await self.emit(LiveEvent.turn_complete())

    async def say(self, text: str) -> None:
        """One whole model turn: a single fragment then the turn boundary."""
        await self.fragment(text)
        await self.turn_complete()

    async def interrupted(self) -> None:
        await self.emit(LiveEvent.interrupted())

    async def drop(self, reason: str = "network lost") -> None:
        await self.emit(LiveEvent.closed(reason))

    async def resumption_update(self, handle: str) -> None:
        await self.emit(LiveEvent(EventKind.RESUMPTION_UPDATE, handle=handle))


class FakeConnector:
    """LiveConnector that hands out FakeConnections; queued failures are raised first."""

    def __init__(self, failures: Optional[List[Exception]] = None) -> None:
        self.failures: List[Exception] = list(failures or [])
        self.connections: List[FakeConnection] = []
        self.params: List[ConnectParams] = []

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]

    def for_role(self, role: Any) -> List[FakeConnection]:
        return [c for c in self.connections if c.params.role == role]

    async def connect(self, params: ConnectParams, on_event) -> FakeConnection:
        self.params.append(params)
        if self.failures:
            raise self.failures.pop(0)
        connection = FakeConnection(params, on_event)
        self.connections.append(connection)
        return connection


class Recorder:
    """Collects callback invocations by name."""

    def __init__(self) -> None:
        self.calls: dict = {}

    def __getattr__(self, name: str):
        if name.startswith("__"):
            raise AttributeError(name)

        def record(*args: Any) -> None:
            self.calls.setdefault(name, []).append(args[0] if len(args) == 1 else args)

        return record

    def get(self, name: str) -> list:
        return self.calls.get(name, [])


async def no_sleep(delay: float) -> None:
    return None


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks (reconnect timers, fire-and-forget sends) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def connection_error(message: str) -> LiveConnectionError:
    return LiveConnectionError(message)
