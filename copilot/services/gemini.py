"""
LiveCopilot — Gemini Live Transport

Adapter between the google-genai Live API and the LiveConnector /
LiveConnection protocols. Everything vendor-specific lives here:

  • building the one-time LiveConnectConfig (modality, media resolution,
    VAD sensitivity, context-window compression, resumption handle,
    system instruction)
  • translating LiveServerMessages into normalized LiveEvents
  • the receive loop, which reports an unexpected teardown as CLOSED
"""

from __future__ import annotations

import asyncio
import base64
import datetime
import logging
from typing import Any, Iterable, List, Optional

from google import genai
from google.genai import types

from ..core.config import LiveConfig, live_cfg
from ..core.errors import ConfigurationError, LiveConnectionError
from ..core.interfaces import EventHandler
from ..core.models import ConnectParams, EventKind, LiveEvent

logger = logging.getLogger("copilot.gemini")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def build_live_config(params: ConnectParams, cfg: LiveConfig = live_cfg) -> types.LiveConnectConfig:
    # Higher threshold = stricter about deciding the speaker has finished
    end_sensitivity = (
        types.EndSensitivity.END_SENSITIVITY_LOW
        if cfg.vad_threshold >= 0.5
        else types.EndSensitivity.END_SENSITIVITY_HIGH
    )
    options = dict(
        response_modalities=[types.Modality(cfg.response_modality)],
        media_resolution=types.MediaResolution(cfg.media_resolution),
        realtime_input_config=types.RealtimeInputConfig(
            automatic_activity_detection=types.AutomaticActivityDetection(
                end_of_speech_sensitivity=end_sensitivity,
            ),
        ),
        context_window_compression=types.ContextWindowCompressionConfig(
            trigger_tokens=cfg.compression_trigger_tokens,
            sliding_window=types.SlidingWindow(target_tokens=cfg.compression_target_tokens),
        ),
        session_resumption=types.SessionResumptionConfig(handle=params.resumption_handle),
    )
    if params.system_instruction:
        options["system_instruction"] = types.Content(
            parts=[types.Part(text=params.system_instruction)]
        )
    if params.input_transcription:
        options["input_audio_transcription"] = types.AudioTranscriptionConfig()
    return types.LiveConnectConfig(**options)


# ---------------------------------------------------------------------------
# Message translation
# ---------------------------------------------------------------------------

def _parse_time_left(raw: Any) -> float:
    """GoAway.time_left may be a timedelta, a number or a string like '50s'."""
    if raw is None:
        return 0.0
    if isinstance(raw, datetime.timedelta):
        return raw.total_seconds()
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).strip().rstrip("sS").strip() or 0)
    except ValueError:
        logger.warning(f"Could not parse GoAway time_left {raw!r}, defaulting to 0")
        return 0.0


def message_to_events(message: Any) -> List[LiveEvent]:
    """
    Translate one LiveServerMessage into LiveEvents, in the order the
    session must apply them: content before interruption before turn end.
    """
    events: List[LiveEvent] = []

    if getattr(message, "setup_complete", None) is not None:
        events.append(LiveEvent(EventKind.OPENED))

    content = getattr(message, "server_content", None)
    if content is not None:
        model_turn = getattr(content, "model_turn", None)
        for part in getattr(model_turn, "parts", None) or []:
            text = getattr(part, "text", None)
            if text and not getattr(part, "thought", False):
                events.append(LiveEvent.content(text))

        transcription = getattr(content, "input_transcription", None)
        if transcription is not None and getattr(transcription, "text", None):
            events.append(LiveEvent(
                EventKind.INPUT_TRANSCRIPT,
                text=transcription.text,
                is_final=bool(getattr(transcription, "finished", False)),
            ))

        if getattr(content, "interrupted", False):
            events.append(LiveEvent.interrupted())
        if getattr(content, "turn_complete", False):
            events.append(LiveEvent.turn_complete())

    update = getattr(message, "session_resumption_update", None)
    if update is not None:
        handle = getattr(update, "new_handle", None)
        if handle and getattr(update, "resumable", True) is not False:
            events.append(LiveEvent(EventKind.RESUMPTION_UPDATE, handle=handle))

    go_away = getattr(message, "go_away", None)
    if go_away is not None:
        events.append(LiveEvent(
            EventKind.CLOSING_SOON,
            time_left=_parse_time_left(getattr(go_away, "time_left", None)),
        ))

    return events


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class GeminiLiveConnection:
    """One open google-genai AsyncSession plus its receive loop."""

    def __init__(self, name: str, session_cm: Any, session: Any, on_event: EventHandler) -> None:
        self._name = name
        self._session_cm = session_cm
        self._session = session
        self._on_event = on_event
        self._closed = False
        self._rx_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._rx_task = asyncio.create_task(self._receiver(), name=f"rx-{self._name}")

    async def _dispatch(self, events: Iterable[LiveEvent]) -> None:
        for event in events:
            result = self._on_event(event)
            if asyncio.iscoroutine(result):
                await result

    async def _receiver(self) -> None:
        reason = ""
        try:
            while not self._closed:
                received = False
                # receive() ends after each turn_complete; loop for the next turn
                async for message in self._session.receive():
                    received = True
                    await self._dispatch(message_to_events(message))
                    if self._closed:
                        break
                if not received:
                    reason = "Connection closed by server"
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
        if not self._closed:
            self._closed = True
            await self._dispatch([LiveEvent.closed(reason)])

    async def send_audio(self, data: str, mime_type: str) -> None:
        await self._session.send_realtime_input(
            audio=types.Blob(data=base64.b64decode(data), mime_type=mime_type)
        )

    async def send_video(self, data: str) -> None:
        await self._session.send_realtime_input(
            video=types.Blob(data=base64.b64decode(data), mime_type="image/jpeg")
        )

    async def send_text(self, text: str) -> None:
        await self._session.send_client_content(
            turns=types.Content(role="user", parts=[types.Part(text=text)]),
            turn_complete=True,
        )

    async def end_audio_stream(self) -> None:
        await self._session.send_realtime_input(audio_stream_end=True)

    async def close(self) -> None:
        if self._closed and self._session_cm is None:
            return
        self._closed = True
        task = self._rx_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        session_cm, self._session_cm = self._session_cm, None
        if session_cm is not None:
            await session_cm.__aexit__(None, None, None)


# ---------------------------------------------------------------------------
# Connector
# ---------------------------------------------------------------------------

class GeminiLiveConnector:
    """Opens Gemini Live sessions with `client.aio.live.connect`."""

    def __init__(self, cfg: LiveConfig = live_cfg, name: str = "gemini") -> None:
        if not cfg.has_api_key:
            raise ConfigurationError("GEMINI_API_KEY environment variable not set.")
        self._cfg = cfg
        self._name = name
        self._client = genai.Client(api_key=cfg.api_key)

    async def connect(self, params: ConnectParams, on_event: EventHandler) -> GeminiLiveConnection:
        config = build_live_config(params, self._cfg)
        resumed = " (resuming)" if params.resumption_handle else ""
        logger.info(f"[{self._name}] Connecting to {self._cfg.model}{resumed}")

        session_cm = self._client.aio.live.connect(model=self._cfg.model, config=config)
        try:
            session = await session_cm.__aenter__()
        except Exception as e:
            raise LiveConnectionError(str(e) or type(e).__name__) from e

        connection = GeminiLiveConnection(
            f"{self._name}:{params.role.value}", session_cm, session, on_event
        )
        connection.start()
        return connection
