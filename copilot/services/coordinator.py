"""
LiveCopilot — Session Coordinators

================================================================================
FROM STREAMED TURNS TO ORDERED TRANSCRIPT / REPLY RECORDS
================================================================================

`DualSessionCoordinator` runs two LiveSessions side by side:

  • transcription session — receives the live audio (and video frames) and
    answers each speaker turn with {"transcript": "..."}
  • reply session — receives no media, only the transcripts the coordinator
    submits, and answers each with {"reply": "..."}

Ordering: parsed transcripts enter a FIFO queue. At most one reply request is
outstanding ("generating"); the next transcript is submitted only when the
previous reply turn completes (parsed or not, or timed out). Replies are
therefore produced strictly in transcript order, one at a time.

Audio: while the transcription session has an open turn, captured chunks go
into a bounded ring buffer instead of the wire, and are flushed in order when
the turn completes (or is abandoned by a reconnect). Every outbound audio
chunk passes through one queue drained by a single sender task, so flushed
chunks always reach the wire before chunks captured after them.

`SingleSessionCopilot` is the one-session variant: a general session sees the
media and answers each turn in the labeled TRANSCRIPT:/REPLY: layout.

No exception escapes a session boundary: fatal conditions are reported via
on_error + Status ERROR and both sessions are torn down. Records already
emitted stay in place.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional, Set

from ..core.config import LiveConfig, live_cfg, storage_cfg, streaming_cfg
from ..core.errors import ConfigurationError, LiveConnectionError
from ..core.interfaces import DisplayCallbacks, LiveConnector
from ..core.latency import LatencyTracer
from ..core.models import (
    AppStatus,
    ConnectParams,
    ReplyRecord,
    RunTelemetry,
    SessionRole,
    TranscriptRecord,
)
from ..core.state_machine import StatusMachine
from ..core.storage import ResumptionStore
from ..processing.audio_buffer import AudioChunk, AudioRingBuffer
from ..processing.parsing import ResponseParserChain
from .live_session import LiveSession, SessionCallbacks

logger = logging.getLogger("copilot.coordinator")

StoreFactory = Callable[[SessionRole], ResumptionStore]


def file_store_factory(role: SessionRole) -> ResumptionStore:
    """One persisted handle per session role, in the shared state file."""
    return ResumptionStore(key=f"{storage_cfg.handle_key}.{role.value}")


def clear_resumption_handles(store_factory: StoreFactory = file_store_factory) -> None:
    """Forget the persisted handle of every session role."""
    for role in SessionRole:
        store_factory(role).clear()


class CopilotRun(ABC):
    """
    Shared lifecycle of one analysis run: status, display callbacks,
    record logs, fatal-error handling and background send tasks.
    """

    def __init__(
        self,
        run_id: str,
        connector: Optional[LiveConnector] = None,
        cfg: LiveConfig = live_cfg,
        store_factory: StoreFactory = file_store_factory,
        session_options: Optional[Dict[str, Any]] = None,
        on_transcript: Optional[Callable[[str, bool], Any]] = None,
        on_reply: Optional[Callable[[str], Any]] = None,
        on_partial_reply: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        on_status_change: Optional[Callable[[AppStatus], Any]] = None,
        on_reconnecting: Optional[Callable[[], Any]] = None,
        display: Optional[DisplayCallbacks] = None,
    ) -> None:
        self.run_id = run_id
        self.telemetry = RunTelemetry(run_id=run_id)

        self._cfg = cfg
        self._connector = connector
        self._store_factory = store_factory
        self._session_options = dict(session_options or {})

        # Callbacks for streaming data to the display layer; explicit ones win
        self._on_transcript = on_transcript or getattr(display, "on_transcript", None)
        self._on_reply = on_reply or getattr(display, "on_reply", None)
        self._on_partial_reply = on_partial_reply or getattr(display, "on_partial_reply", None)
        self._on_error = on_error or getattr(display, "on_error", None)
        self._on_status_change = on_status_change or getattr(display, "on_status_change", None)
        self._on_reconnecting = on_reconnecting or getattr(display, "on_reconnecting", None)

        self._status = StatusMachine()
        self._latency = LatencyTracer(run_id)
        self._parser = ResponseParserChain()
        self._sessions: List[LiveSession] = []
        self._tasks: Set[asyncio.Task] = set()
        self._running = False
        self._failing = False

        self.transcripts: List[TranscriptRecord] = []
        self.replies: List[ReplyRecord] = []

    @property
    def status(self) -> AppStatus:
        return self._status.status

    @property
    def is_active(self) -> bool:
        return self._running

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Open all sessions. Returns False (status ERROR) on failure."""
        logger.info(f"[{self.run_id}] Starting...")
        if self._running or self._sessions:
            await self._cleanup()
            await self._set_status(AppStatus.IDLE, "restart")
        self._failing = False
        self.transcripts = []
        self.replies = []
        self._reset_state()
        self._latency.reset()

        await self._set_status(AppStatus.CAPTURING, "start")

        if self._connector is None:
            try:
                from .gemini import GeminiLiveConnector
                self._connector = GeminiLiveConnector(self._cfg, name=self.run_id)
            except ConfigurationError as e:
                await self._fail(str(e))
                return False

        self._sessions = self._build_sessions(self._connector)
        await self._set_status(AppStatus.CONNECTING, "opening sessions")
        self._latency.mark("connect_started")

        results = await asyncio.gather(
            *(session.connect(self._callbacks_for(session), self._params_for(session))
              for session in self._sessions),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            first = errors[0]
            message = first.message if isinstance(first, LiveConnectionError) else str(first)
            await self._fail(f"Failed to start session: {message}")
            return False

        self._running = True
        self._latency.mark("connected")
        self._on_connected()
        logger.info(f"[{self.run_id}] All {len(self._sessions)} session(s) connected.")
        await self._set_status(AppStatus.ANALYZING, "connected")
        return True

    async def stop(self) -> Dict[str, Any]:
        """Stop and return a run summary."""
        logger.info(f"[{self.run_id}] Stopping...")
        await self._set_status(AppStatus.STOPPING, "stop requested")
        await self._cleanup()
        await self._set_status(AppStatus.IDLE, "stopped")
        summary = self.snapshot()
        logger.info(f"[{self.run_id}] Stopped — {summary['telemetry']}")
        return summary

    def reset_resumption(self) -> None:
        """User-initiated full reset: forget every persisted resumption handle."""
        if self._sessions:
            for session in self._sessions:
                session.reconnection.clear_handle()
        else:
            for role in self._roles():
                self._store_factory(role).clear()
        logger.info(f"[{self.run_id}] Resumption handles cleared")

    def snapshot(self) -> Dict[str, Any]:
        self.telemetry.status = self.status.value
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "active": self._running,
            "transcripts": [r.to_dict() for r in self.transcripts],
            "replies": [r.to_dict() for r in self.replies],
            "sessions": {
                s.name: {
                    "connected": s.is_connected(),
                    "turn": s.accumulator.snapshot().to_dict(),
                    "reconnect_attempts": s.reconnection.attempts,
                }
                for s in self._sessions
            },
            "telemetry": self.telemetry.to_dict(),
            "latency": self._latency.summary(),
        }

    # ── Media input (fire-and-forget) ───────────────────────────────────

    @abstractmethod
    def push_audio(self, data: str, mime_type: str = streaming_cfg.audio_mime_type) -> None:
        ...

    def push_frame(self, data: str) -> None:
        session = self._media_session()
        if not self._running or session is None:
            return
        self.telemetry.frames_sent += 1
        self._spawn(session.send_video_frame(data))

    def end_audio(self) -> None:
        session = self._media_session()
        if not self._running or session is None:
            return
        self._spawn(session.end_audio_stream())

    # ── Hooks for subclasses ────────────────────────────────────────────

    @abstractmethod
    def _roles(self) -> List[SessionRole]:
        ...

    def _build_sessions(self, connector: LiveConnector) -> List[LiveSession]:
        return [
            LiveSession(
                f"{self.run_id}:{role.value}",
                connector,
                role=role,
                store=self._store_factory(role),
                **self._session_options,
            )
            for role in self._roles()
        ]

    @abstractmethod
    def _callbacks_for(self, session: LiveSession) -> SessionCallbacks:
        ...

    @abstractmethod
    def _params_for(self, session: LiveSession) -> ConnectParams:
        ...

    @abstractmethod
    def _media_session(self) -> Optional[LiveSession]:
        ...

    def _on_connected(self) -> None:
        pass

    def _reset_state(self) -> None:
        pass

    # ── Shared session callbacks ────────────────────────────────────────

    async def _handle_open(self) -> None:
        if (
            self._running
            and self.status == AppStatus.CONNECTING
            and all(s.is_connected() for s in self._sessions)
        ):
            await self._set_status(AppStatus.ANALYZING, "reconnected")

    async def _handle_reconnecting(self) -> None:
        self.telemetry.reconnects += 1
        logger.warning(f"[{self.run_id}] Connection lost. Attempting to reconnect...")
        await self._set_status(AppStatus.CONNECTING, "reconnecting")
        await self._emit(self._on_reconnecting)

    def _session_error_handler(self, label: str) -> Callable[[str], Any]:
        async def handler(message: str) -> None:
            # Remote errors are reported; the CLOSED event that may follow drives recovery
            await self._emit(self._on_error, f"{label} Error: {message}")
        return handler

    def _session_close_handler(self, label: str) -> Callable[[str], Any]:
        async def handler(reason: str) -> None:
            await self._fail(f"{label} closed unexpectedly: {reason or 'Unknown reason'}")
        return handler

    # ── Records ─────────────────────────────────────────────────────────

    async def _record_transcript(self, text: str) -> None:
        self.transcripts.append(TranscriptRecord(text=text))
        self.telemetry.transcripts += 1
        self._latency.mark("first_transcript")
        logger.info(f"[{self.run_id}] Parsed transcript: {text[:30]}...")
        await self._emit(self._on_transcript, text, True)

    async def _record_reply(self, text: str) -> None:
        self.replies.append(ReplyRecord(text=text))
        self.telemetry.replies += 1
        self._latency.mark("first_reply")
        logger.info(f"[{self.run_id}] Parsed reply: {text[:30]}...")
        await self._emit(self._on_reply, text)

    # ── Failure / teardown ──────────────────────────────────────────────

    async def _fail(self, message: str) -> None:
        if self._failing:
            return
        self._failing = True
        logger.error(f"[{self.run_id}] {message}")
        await self._emit(self._on_error, message)
        await self._set_status(AppStatus.ERROR, message)
        await self._cleanup()

    async def _cleanup(self) -> None:
        self._running = False
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()
        self._tasks.clear()
        sessions, self._sessions = self._sessions, []
        for session in sessions:
            await session.disconnect()
        self._reset_state()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── Status / callback dispatch ──────────────────────────────────────

    async def _set_status(self, status: AppStatus, reason: str = "") -> None:
        previous = self._status.status
        try:
            self._status.transition(status, reason)
        except ValueError as e:
            logger.warning(f"[{self.run_id}] {e}")
            return
        self.telemetry.status = status.value
        if previous != status:
            await self._emit(self._on_status_change, status)

    async def _emit(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"[{self.run_id}] Display callback error: {e}", exc_info=True)


# ═══════════════════════════════════════════════════════════════════════════
# Dual-session coordinator
# ═══════════════════════════════════════════════════════════════════════════

class DualSessionCoordinator(CopilotRun):
    """
    Transcription session + reply session with FIFO reply serialization.

    Lifecycle:
        coordinator = DualSessionCoordinator(run_id, on_transcript=..., on_reply=...)
        await coordinator.start()
        coordinator.push_audio(b64_pcm)       # from the capture loop
        coordinator.push_frame(b64_jpeg)
        await coordinator.stop()
    """

    def __init__(
        self,
        run_id: str,
        audio_buffer_capacity: int = streaming_cfg.audio_buffer_capacity,
        **kwargs: Any,
    ) -> None:
        self._pending: Deque[str] = deque()
        self._generating = False
        self._audio_buffer = AudioRingBuffer(audio_buffer_capacity)
        # AudioChunk, or None for end-of-audio
        self._outbound: asyncio.Queue = asyncio.Queue()
        self.transcription: Optional[LiveSession] = None
        self.reply: Optional[LiveSession] = None
        super().__init__(run_id, **kwargs)

    @property
    def queue(self) -> List[str]:
        return list(self._pending)

    @property
    def reply_generating(self) -> bool:
        return self._generating

    @property
    def audio_buffer(self) -> AudioRingBuffer:
        return self._audio_buffer

    def _roles(self) -> List[SessionRole]:
        return [SessionRole.TRANSCRIPTION, SessionRole.REPLY]

    def _build_sessions(self, connector: LiveConnector) -> List[LiveSession]:
        sessions = super()._build_sessions(connector)
        self.transcription, self.reply = sessions
        return sessions

    def _media_session(self) -> Optional[LiveSession]:
        return self.transcription

    def _reset_state(self) -> None:
        self._pending.clear()
        self._generating = False
        self._audio_buffer.clear()
        self._outbound = asyncio.Queue()
        self.telemetry.queue_depth = 0
        self.telemetry.reply_generating = False

    def _params_for(self, session: LiveSession) -> ConnectParams:
        if session.role == SessionRole.TRANSCRIPTION:
            return ConnectParams(
                system_instruction=self._cfg.transcript_prompt,
                input_transcription=True,
            )
        return ConnectParams(system_instruction=self._cfg.reply_prompt)

    def _callbacks_for(self, session: LiveSession) -> SessionCallbacks:
        if session.role == SessionRole.TRANSCRIPTION:
            return SessionCallbacks(
                on_open=self._handle_open,
                on_turn_complete=self._handle_transcript_turn,
                on_turn_abandoned=self._handle_abandoned_turn,
                on_transcript=self._handle_live_transcript,
                on_error=self._session_error_handler("Transcript Service"),
                on_close=self._session_close_handler("Transcript service"),
                on_reconnecting=self._handle_reconnecting,
            )
        return SessionCallbacks(
            on_open=self._handle_open,
            on_partial=self._handle_reply_chunk,
            on_turn_complete=self._handle_reply_turn,
            on_error=self._session_error_handler("Reply Service"),
            on_close=self._session_close_handler("Reply service"),
            on_reconnecting=self._handle_reconnecting,
        )

    # ── Audio routing ───────────────────────────────────────────────────

    def push_audio(self, data: str, mime_type: str = streaming_cfg.audio_mime_type) -> None:
        session = self.transcription
        if not self._running or session is None:
            return
        if session.turn_open:
            self._audio_buffer.append(AudioChunk(data=data, mime_type=mime_type))
            self.telemetry.audio_chunks_buffered += 1
            self.telemetry.audio_chunks_dropped = self._audio_buffer.dropped
            return
        self.telemetry.audio_chunks_sent += 1
        self._outbound.put_nowait(AudioChunk(data=data, mime_type=mime_type))

    def end_audio(self) -> None:
        if not self._running or self.transcription is None:
            return
        self._outbound.put_nowait(None)

    def _flush_audio(self) -> None:
        chunks = self._audio_buffer.drain()
        if not chunks:
            return
        logger.info(f"[{self.run_id}] Flushing {len(chunks)} buffered audio chunk(s)")
        self.telemetry.audio_chunks_sent += len(chunks)
        for chunk in chunks:
            self._outbound.put_nowait(chunk)

    def _on_connected(self) -> None:
        self._spawn(self._send_audio_loop(self._outbound))

    async def _send_audio_loop(self, outbound: asyncio.Queue) -> None:
        while True:
            chunk = await outbound.get()
            session = self.transcription
            if session is None:
                continue
            if chunk is None:
                await session.end_audio_stream()
            else:
                await session.send_audio_chunk(chunk.data, chunk.mime_type)

    # ── Transcription session ───────────────────────────────────────────

    async def _handle_live_transcript(self, text: str, is_final: bool) -> None:
        # Live input transcription is display-only; records come from closed turns
        await self._emit(self._on_transcript, text, False)

    async def _handle_abandoned_turn(self) -> None:
        # No turn is open on the new connection; stop holding audio back
        self._flush_audio()

    async def _handle_transcript_turn(self, text: Optional[str]) -> None:
        self.telemetry.turns_completed += 1
        self._flush_audio()
        if not text:
            return
        parsed = self._parser.try_parse(text, source=f"{self.run_id}:transcription")
        if parsed is None or not parsed.transcript:
            self.telemetry.parse_failures += 1
            return
        await self._record_transcript(parsed.transcript)
        await self.enqueue_transcript(parsed.transcript)

    async def enqueue_transcript(self, transcript: str) -> None:
        """Append to the pending queue tail and try to submit the head."""
        self._pending.append(transcript)
        self.telemetry.queue_depth = len(self._pending)
        await self._drain()

    async def _drain(self) -> None:
        if not self._running or self.reply is None or self._generating or not self._pending:
            return
        transcript = self._pending.popleft()
        self._generating = True
        self.telemetry.queue_depth = len(self._pending)
        self.telemetry.reply_generating = True
        logger.info(f"[{self.run_id}] Sending transcript to reply service: {transcript[:50]!r}")
        await self.reply.request(self._cfg.reply_request_template.format(transcript=transcript))

    # ── Reply session ───────────────────────────────────────────────────

    async def _handle_reply_chunk(self, chunk: str) -> None:
        await self._emit(self._on_partial_reply, chunk)

    async def _handle_reply_turn(self, text: Optional[str]) -> None:
        self.telemetry.turns_completed += 1
        if text:
            parsed = self._parser.try_parse(text, source=f"{self.run_id}:reply")
            if parsed is not None and parsed.reply:
                await self._record_reply(parsed.reply)
            else:
                self.telemetry.parse_failures += 1
        self._generating = False
        self.telemetry.reply_generating = False
        await self._drain()


# ═══════════════════════════════════════════════════════════════════════════
# Single-session copilot (labeled layout)
# ═══════════════════════════════════════════════════════════════════════════

class SingleSessionCopilot(CopilotRun):
    """One general session answering each turn with TRANSCRIPT:/REPLY: sections."""

    def __init__(self, run_id: str, **kwargs: Any) -> None:
        self.session: Optional[LiveSession] = None
        super().__init__(run_id, **kwargs)

    def _roles(self) -> List[SessionRole]:
        return [SessionRole.GENERAL]

    def _build_sessions(self, connector: LiveConnector) -> List[LiveSession]:
        sessions = super()._build_sessions(connector)
        self.session = sessions[0]
        return sessions

    def _media_session(self) -> Optional[LiveSession]:
        return self.session

    def _params_for(self, session: LiveSession) -> ConnectParams:
        return ConnectParams(system_instruction=self._cfg.general_prompt)

    def _callbacks_for(self, session: LiveSession) -> SessionCallbacks:
        return SessionCallbacks(
            on_open=self._handle_open,
            on_partial=self._handle_chunk,
            on_turn_complete=self._handle_turn,
            on_transcript=self._handle_live_transcript,
            on_error=self._session_error_handler("Live API"),
            on_close=self._session_close_handler("Live API"),
            on_reconnecting=self._handle_reconnecting,
        )

    def push_audio(self, data: str, mime_type: str = streaming_cfg.audio_mime_type) -> None:
        if not self._running or self.session is None:
            return
        self.telemetry.audio_chunks_sent += 1
        self._spawn(self.session.send_audio_chunk(data, mime_type))

    async def _handle_live_transcript(self, text: str, is_final: bool) -> None:
        await self._emit(self._on_transcript, text, False)

    async def _handle_chunk(self, chunk: str) -> None:
        await self._emit(self._on_partial_reply, chunk)

    async def _handle_turn(self, text: Optional[str]) -> None:
        self.telemetry.turns_completed += 1
        if not text:
            return
        parsed = self._parser.try_parse(text, source=f"{self.run_id}:general")
        if parsed is None:
            self.telemetry.parse_failures += 1
            return
        if parsed.transcript:
            await self._record_transcript(parsed.transcript)
        if parsed.reply:
            await self._record_reply(parsed.reply)
