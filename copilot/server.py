"""
LiveCopilot — FastAPI Server

================================================================================
Architecture:
  • One coordinator per WebSocket connection, held in a RunRegistry
  • The browser captures screen + microphone, encodes frames (base64 JPEG)
    and audio (base64 16 kHz PCM) and streams them over the socket
  • The coordinator forwards media to the Gemini Live transcription session,
    serializes reply requests, and streams transcripts / replies back
================================================================================

Endpoints:
  WS  /ws/live          — real-time copilot stream
  GET /health           — server health
  GET /runs             — list active runs with telemetry
  GET /runs/{run_id}    — single run detail (records, telemetry, latency)

Client → Server messages:
  { type: "start", mode: "dual" | "single" }   → open the live sessions
  { type: "audio", data: "...", mime_type }    → base64 PCM chunk
  { type: "frame", data: "..." }               → base64 JPEG frame
  { type: "audio_end" }                        → microphone stopped
  { type: "stop" }                             → stop the current run
  { type: "reset" }                            → forget resumption handles
  { type: "ping" }                             → keepalive

Server → Client messages:
  { type: "transcript", data: {...} }          → final transcript record
  { type: "partial_transcript", data: {...} }  → live input transcription
  { type: "reply", data: {...} }               → final reply record
  { type: "partial_reply", data: {...} }       → streamed reply fragment
  { type: "status", data: {...} }              → AppStatus change
  { type: "reconnecting" }                     → connection lost, retrying
  { type: "started", data: {...} }             → ack + snapshot
  { type: "stopped", data: {...} }             → ack + summary
  { type: "pong" }                             → keepalive ack
  { type: "error", message: "..." }            → error
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import live_cfg, server_cfg, streaming_cfg
from .core.models import AppStatus
from .services.coordinator import CopilotRun, clear_resumption_handles
from .services.registry import MODES, RunRegistry

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("copilot")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ---------------------------------------------------------------------------
# Run Registry
# ---------------------------------------------------------------------------

registry = RunRegistry()

# ---------------------------------------------------------------------------
# FastAPI Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 LiveCopilot Backend starting...")
    logger.info(f"   Gemini key configured: {live_cfg.has_api_key} (model {live_cfg.model})")
    yield
    logger.info("🛑 Shutting down — stopping all runs...")
    await registry.stop_all()
    logger.info("🛑 LiveCopilot Backend stopped")


# ---------------------------------------------------------------------------
# FastAPI App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LiveCopilot — Real-Time Interview Copilot",
    version=VERSION,
    description=(
        "Streams screen and microphone to Gemini Live, turns each spoken "
        "turn into a transcript and answers it in transcript order."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# REST Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "version": VERSION,
        "gemini_key_configured": live_cfg.has_api_key,
        "model": live_cfg.model,
        "active_runs": registry.active_count,
    }


@app.get("/runs")
async def list_runs():
    result: Dict[str, Any] = {}
    for run_id, run in registry.all_runs.items():
        result[run_id] = {
            "active": run.is_active,
            "status": run.status.value,
            "telemetry": run.telemetry.to_dict(),
        }
    return result


@app.get("/runs/{run_id}")
async def run_detail(run_id: str):
    run = registry.get(run_id)
    if run is None:
        return JSONResponse(status_code=404, content={"error": "run not found"})
    return run.snapshot()


# ---------------------------------------------------------------------------
# WebSocket: Per-Run Live Stream
# ---------------------------------------------------------------------------

@app.websocket("/ws/live")
async def websocket_live(ws: WebSocket):
    """
    WebSocket endpoint — one coordinator per connection.
    Media flows in; transcripts, replies and status flow out.
    """
    await ws.accept()

    run_id = uuid.uuid4().hex[:12]
    current_run: Optional[CopilotRun] = None
    start_task: Optional[asyncio.Task] = None

    # Helper to send JSON safely
    async def send(data: Dict[str, Any]) -> None:
        try:
            await ws.send_text(json.dumps(data))
        except Exception as e:
            logger.debug(f"[{run_id}] WebSocket send failed: {e}")

    # Display callbacks
    async def on_transcript(text: str, is_final: bool) -> None:
        kind = "transcript" if is_final else "partial_transcript"
        await send({"type": kind, "data": {"text": text, "timestamp": time.time()}})

    async def on_reply(text: str) -> None:
        await send({"type": "reply", "data": {"text": text, "timestamp": time.time()}})

    async def on_partial_reply(text: str) -> None:
        await send({"type": "partial_reply", "data": {"text": text}})

    async def on_error(message: str) -> None:
        await send({"type": "error", "message": message})

    async def on_status_change(status: AppStatus) -> None:
        nonlocal current_run
        await send({"type": "status", "data": {"status": status.value}})
        if status == AppStatus.ERROR and current_run is not None:
            # The run tore itself down; free the slot for the next start
            current_run = None
            registry.discard(run_id)

    async def on_reconnecting() -> None:
        await send({"type": "reconnecting"})

    async def stop_current() -> Dict[str, Any]:
        nonlocal current_run, start_task
        if start_task and not start_task.done():
            start_task.cancel()
            try:
                await start_task
            except asyncio.CancelledError:
                pass
        start_task = None
        current_run = None
        return await registry.stop_run(run_id) or {}

    try:
        while True:
            raw = await ws.receive_text()

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug(f"[{run_id}] Ignoring non-JSON message")
                continue
            if not isinstance(message, dict):
                continue

            msg_type = message.get("type", "")

            # ── Media ──
            if msg_type == "audio":
                data = message.get("data")
                if current_run is not None and isinstance(data, str) and data:
                    current_run.push_audio(data, message.get("mime_type") or streaming_cfg.audio_mime_type)

            elif msg_type == "frame":
                data = message.get("data")
                if current_run is not None and isinstance(data, str) and data:
                    current_run.push_frame(data)

            elif msg_type == "audio_end":
                if current_run is not None:
                    current_run.end_audio()

            # ── Start run ──
            elif msg_type == "start":
                if current_run is not None:
                    await send({"type": "error", "message": "Run already active"})
                    continue

                mode = message.get("mode", "dual")
                if mode not in MODES:
                    await send({"type": "error", "message": f"Unknown mode: {mode}"})
                    continue

                run = registry.create(
                    run_id,
                    mode=mode,
                    on_transcript=on_transcript,
                    on_reply=on_reply,
                    on_partial_reply=on_partial_reply,
                    on_error=on_error,
                    on_status_change=on_status_change,
                    on_reconnecting=on_reconnecting,
                )
                current_run = run

                async def _start_run(run: CopilotRun = run) -> None:
                    nonlocal current_run
                    if await run.start():
                        await send({"type": "started", "data": run.snapshot()})
                    elif current_run is run:
                        # on_error already told the client why
                        current_run = None
                        registry.discard(run.run_id)

                start_task = asyncio.create_task(_start_run())

            # ── Stop run ──
            elif msg_type == "stop":
                if current_run is None:
                    continue
                summary = await stop_current()
                await send({"type": "stopped", "data": summary})

            # ── Full reset ──
            elif msg_type == "reset":
                if current_run is not None:
                    current_run.reset_resumption()
                else:
                    clear_resumption_handles()
                status = current_run.status.value if current_run is not None else AppStatus.IDLE.value
                await send({"type": "status", "data": {"status": status, "reset": True}})

            # ── Keepalive ──
            elif msg_type == "ping":
                await send({"type": "pong"})

    except WebSocketDisconnect:
        logger.info(f"[{run_id}] WebSocket disconnected")
    except Exception as e:
        logger.error(f"[{run_id}] WebSocket error: {e}", exc_info=True)
    finally:
        if current_run is not None or (start_task and not start_task.done()):
            await stop_current()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "copilot.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        reload=True,
        log_level="info",
    )
