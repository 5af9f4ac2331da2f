"""
LiveCopilot — Data Models

Dataclasses for every piece of data flowing through the system.
Records handed to the display layer are frozen: they are created once from
a closed turn and never mutated afterwards.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class AppStatus(str, Enum):
    """UI-facing status of one analysis run."""
    IDLE = "idle"
    CAPTURING = "capturing"      # Waiting on the media producer
    CONNECTING = "connecting"    # Handshake or reconnect in progress
    ANALYZING = "analyzing"      # Sessions open, media flowing
    STOPPING = "stopping"
    ERROR = "error"


class SessionRole(str, Enum):
    TRANSCRIPTION = "transcription"
    REPLY = "reply"
    GENERAL = "general"


class EventKind(str, Enum):
    """Abstract inbound message shapes, independent of the vendor wire format."""
    OPENED = "opened"
    CONTENT = "content"
    TURN_COMPLETE = "turn_complete"
    INTERRUPTED = "interrupted"
    INPUT_TRANSCRIPT = "input_transcript"
    RESUMPTION_UPDATE = "resumption_update"
    CLOSING_SOON = "closing_soon"
    CLOSED = "closed"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LiveEvent:
    """
    One normalized inbound event.

    Only the fields relevant to `kind` are populated:
      • CONTENT / INPUT_TRANSCRIPT  → text
      • RESUMPTION_UPDATE           → handle
      • CLOSING_SOON                → time_left (seconds)
      • CLOSED / ERROR              → reason
    """
    kind: EventKind
    text: str = ""
    handle: Optional[str] = None
    time_left: float = 0.0
    reason: str = ""
    is_final: bool = False

    @classmethod
    def content(cls, text: str) -> "LiveEvent":
        return cls(EventKind.CONTENT, text=text)

    @classmethod
    def turn_complete(cls) -> "LiveEvent":
        return cls(EventKind.TURN_COMPLETE)

    @classmethod
    def interrupted(cls) -> "LiveEvent":
        return cls(EventKind.INTERRUPTED)

    @classmethod
    def closed(cls, reason: str = "") -> "LiveEvent":
        return cls(EventKind.CLOSED, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "LiveEvent":
        return cls(EventKind.ERROR, reason=reason)


# ---------------------------------------------------------------------------
# Display records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TranscriptRecord:
    """A transcribed speaker turn, appended to the transcript log."""
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReplyRecord:
    """A generated reply, appended to the reply log."""
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ParsedTurn:
    """Result of parsing one completed turn against a response layout."""
    transcript: Optional[str] = None
    reply: Optional[str] = None
    layout: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.transcript and not self.reply


# ---------------------------------------------------------------------------
# Run telemetry
# ---------------------------------------------------------------------------

@dataclass
class RunTelemetry:
    """Per-run counters — never crashes the run."""
    run_id: str = ""
    status: str = "idle"
    turns_completed: int = 0
    transcripts: int = 0
    replies: int = 0
    parse_failures: int = 0
    reconnects: int = 0
    audio_chunks_sent: int = 0
    audio_chunks_buffered: int = 0
    audio_chunks_dropped: int = 0
    frames_sent: int = 0
    queue_depth: int = 0
    reply_generating: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Connection parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectParams:
    """One-time parameters sent with the handshake."""
    system_instruction: str = ""
    role: SessionRole = SessionRole.GENERAL
    resumption_handle: Optional[str] = None
    # Ask the remote for live transcription of the input audio
    input_transcription: bool = False
