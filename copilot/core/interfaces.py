"""
LiveCopilot — Layer Interfaces

Protocol definitions for the seams between the three layers:
  1. Transport  — a live duplex connection to the remote model
  2. Turns      — parsing completed turns into transcript/reply records
  3. Display    — the callback surface consumed by the UI collaborator

Each layer communicates through these protocols — never by reaching
into another layer's internals. Tests substitute fakes at the transport seam.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from .models import AppStatus, ConnectParams, LiveEvent, ParsedTurn


EventHandler = Callable[[LiveEvent], Any]


# ═══════════════════════════════════════════════════════════════════════════
# Transport Layer — one open duplex connection
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class LiveConnection(Protocol):
    """An open connection. Created by a LiveConnector, never reused after close."""

    async def send_audio(self, data: str, mime_type: str) -> None:
        """Send one base64 PCM chunk."""
        ...

    async def send_video(self, data: str) -> None:
        """Send one base64 JPEG frame."""
        ...

    async def send_text(self, text: str) -> None:
        """Send a complete user text turn."""
        ...

    async def end_audio_stream(self) -> None:
        ...

    async def close(self) -> None:
        """Close the connection. Must not emit a CLOSED event afterwards."""
        ...


@runtime_checkable
class LiveConnector(Protocol):
    """Factory for LiveConnections."""

    async def connect(self, params: ConnectParams, on_event: EventHandler) -> LiveConnection:
        """
        Open a connection and return once the handshake has resolved.

        Raises LiveConnectionError if the remote rejects the handshake.
        Inbound events are delivered to `on_event` in transport order; an
        unexpected teardown is reported as a CLOSED event.
        """
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Turn Layer — response-format parsing
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class ResponseParser(Protocol):
    """One response layout. Raises ResponseParseError when text doesn't match."""

    name: str

    def parse(self, text: str) -> ParsedTurn:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Display Layer — callbacks consumed by the UI collaborator
# ═══════════════════════════════════════════════════════════════════════════

class DisplayCallbacks(Protocol):
    """Any callback may be a plain function or a coroutine function."""

    def on_transcript(self, text: str, is_final: bool) -> Any | Awaitable[Any]:
        ...

    def on_reply(self, text: str) -> Any | Awaitable[Any]:
        ...

    def on_partial_reply(self, text: str) -> Any | Awaitable[Any]:
        ...

    def on_error(self, message: str) -> Any | Awaitable[Any]:
        ...

    def on_status_change(self, status: AppStatus) -> Any | Awaitable[Any]:
        ...

    def on_reconnecting(self) -> Any | Awaitable[Any]:
        ...
