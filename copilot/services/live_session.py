"""
LiveCopilot — Live Session

================================================================================
ONE DUPLEX CONNECTION TO THE REMOTE MODEL
================================================================================

`LiveSession` owns a single logical connection and exposes a normalized
callback surface regardless of transport quirks:

  1. connect() opens the connection through a LiveConnector and registers
     the inbound event handler.
  2. Inbound CONTENT / TURN_COMPLETE / INTERRUPTED events drive the
     TurnAccumulator; completed turns are handed to `on_turn_complete`.
  3. An unexpected CLOSED event hands control to the ReconnectionController,
     which retries with backoff and the last-known resumption handle.
  4. request() sends a text turn whose answer is awaited. If the connection
     drops before the answer completes, the partial answer is discarded and
     the request re-issued after reconnecting. A bounded timeout fires a
     synthetic completion so callers never stall on a dropped response.

Outbound sends never raise: a missing connection or a send failure is logged
and swallowed so the capture loop keeps its cadence.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from ..core.config import session_cfg
from ..core.errors import AlreadyConnectedError, LiveConnectionError, is_handle_invalid
from ..core.interfaces import LiveConnection, LiveConnector
from ..core.models import ConnectParams, EventKind, LiveEvent, SessionRole
from ..core.storage import MemoryResumptionStore, ResumptionStore
from ..processing.accumulator import InterruptPolicy, TurnAccumulator
from .reconnect import ReconnectionController, SleepFn

logger = logging.getLogger("copilot.session")


@dataclass
class SessionCallbacks:
    """
    Callback surface of one session. Each may be a plain function or a
    coroutine function; exceptions are logged, never propagated.
    """
    on_open: Optional[Callable[[], Any]] = None
    on_turn_started: Optional[Callable[[], Any]] = None
    on_partial: Optional[Callable[[str], Any]] = None
    # Fired at every turn boundary: text is None for an empty turn or a timeout
    on_turn_complete: Optional[Callable[[Optional[str]], Any]] = None
    # The connection dropped mid-turn and the partial turn was discarded
    on_turn_abandoned: Optional[Callable[[], Any]] = None
    on_transcript: Optional[Callable[[str, bool], Any]] = None
    on_error: Optional[Callable[[str], Any]] = None
    # Terminal: reconnection gave up
    on_close: Optional[Callable[[str], Any]] = None
    on_reconnecting: Optional[Callable[[], Any]] = None
    on_closing_soon: Optional[Callable[[float], Any]] = None


class LiveSession:
    """
    Manages one live connection with automatic reconnection.

    Lifecycle:
        session = LiveSession("reply", connector, role=SessionRole.REPLY)
        await session.connect(SessionCallbacks(on_turn_complete=...), ConnectParams(...))
        await session.request("Interviewer said: ...")
        await session.disconnect()
    """

    def __init__(
        self,
        name: str,
        connector: LiveConnector,
        role: SessionRole = SessionRole.GENERAL,
        store: Optional[ResumptionStore] = None,
        interrupt_policy: InterruptPolicy = InterruptPolicy(session_cfg.interrupt_policy),
        response_timeout: float = session_cfg.response_timeout,
        max_reconnect_attempts: int = session_cfg.max_reconnect_attempts,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.name = name
        self.role = role
        self._connector = connector
        self._response_timeout = response_timeout

        self._connection: Optional[LiveConnection] = None
        self._generation = 0
        self._intentional_close = False
        self._callbacks = SessionCallbacks()
        self._params = ConnectParams(role=role)

        self._accumulator = TurnAccumulator(name, interrupt_policy=interrupt_policy)
        self._reconnect = ReconnectionController(
            name,
            store if store is not None else MemoryResumptionStore(),
            max_attempts=max_reconnect_attempts,
            sleep=sleep,
        )

        # Request whose answer is still outstanding (re-issued after reconnect)
        self._pending_request: Optional[str] = None
        self._timeout_task: Optional[asyncio.Task] = None

    @property
    def accumulator(self) -> TurnAccumulator:
        return self._accumulator

    @property
    def reconnection(self) -> ReconnectionController:
        return self._reconnect

    @property
    def awaiting_response(self) -> bool:
        return self._pending_request is not None

    @property
    def turn_open(self) -> bool:
        return self._accumulator.turn_open

    def is_connected(self) -> bool:
        return self._connection is not None

    # ── Connect / disconnect ────────────────────────────────────────────

    async def connect(self, callbacks: SessionCallbacks, params: ConnectParams) -> None:
        """
        Open the connection. Raises AlreadyConnectedError if one is open and
        LiveConnectionError if the remote rejects the handshake.
        """
        if self._connection is not None:
            logger.warning(f"[{self.name}] Session already exists. Disconnect first.")
            raise AlreadyConnectedError(f"Session '{self.name}' is already connected")

        self._intentional_close = False
        self._reconnect.cancel()
        self._callbacks = callbacks
        self._params = replace(params, role=self.role)

        logger.info(f"[{self.name}] Starting new Live API session...")
        try:
            await self._open()
        except LiveConnectionError as e:
            logger.error(f"[{self.name}] Connection failed: {e.message}")
            raise

    async def disconnect(self) -> None:
        """Intentional close. Idempotent."""
        self._intentional_close = True
        self._reconnect.cancel()
        self._cancel_timeout()
        self._pending_request = None
        self._accumulator.clear()

        connection, self._connection = self._connection, None
        if connection is None:
            return
        self._generation += 1
        logger.info(f"[{self.name}] Disconnecting session intentionally.")
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"[{self.name}] Error while closing connection: {e}")

    async def _open(self) -> None:
        """Open a connection with the current resumption handle, if any."""
        handle = self._reconnect.handle
        try:
            connection = await self._connect_once(handle)
        except LiveConnectionError as e:
            if not (handle and e.is_handle_invalid):
                raise
            logger.warning(
                f"[{self.name}] Resumption handle rejected ({e.message}) — "
                f"retrying as a new session"
            )
            self._reconnect.clear_handle()
            connection = await self._connect_once(None)

        self._connection = connection
        self._reconnect.reset()
        logger.info(f"[{self.name}] Live API connection opened successfully.")
        await self._emit(self._callbacks.on_open)

    async def _connect_once(self, handle: Optional[str]) -> LiveConnection:
        self._generation += 1
        generation = self._generation

        async def on_event(event: LiveEvent) -> None:
            await self._handle_event(event, generation)

        params = replace(self._params, resumption_handle=handle)
        try:
            return await self._connector.connect(params, on_event)
        except LiveConnectionError:
            raise
        except Exception as e:
            raise LiveConnectionError(str(e) or type(e).__name__) from e

    # ── Inbound events ──────────────────────────────────────────────────

    async def _handle_event(self, event: LiveEvent, generation: int) -> None:
        if generation != self._generation:
            return  # Stale connection

        kind = event.kind
        if kind == EventKind.CONTENT:
            if self._accumulator.add_fragment(event.text):
                logger.info(f"[{self.name}] Model turn started")
                await self._emit(self._callbacks.on_turn_started)
            if event.text:
                await self._emit(self._callbacks.on_partial, event.text)

        elif kind == EventKind.TURN_COMPLETE:
            text = self._accumulator.complete()
            if self._pending_request is not None:
                self._pending_request = None
                self._cancel_timeout()
            if text:
                logger.info(f"[{self.name}] Complete model response: {text[:50]!r}")
            await self._emit(self._callbacks.on_turn_complete, text)

        elif kind == EventKind.INTERRUPTED:
            logger.info(f"[{self.name}] Model response interrupted.")
            self._accumulator.interrupt()

        elif kind == EventKind.INPUT_TRANSCRIPT:
            if event.text:
                await self._emit(self._callbacks.on_transcript, event.text, event.is_final)

        elif kind == EventKind.RESUMPTION_UPDATE:
            if event.handle:
                self._reconnect.update_handle(event.handle)

        elif kind == EventKind.CLOSING_SOON:
            # Advisory only — the CLOSED event that follows drives reconnection
            logger.warning(f"[{self.name}] Server closing connection in {event.time_left:.0f}s")
            await self._emit(self._callbacks.on_closing_soon, event.time_left)

        elif kind == EventKind.ERROR:
            logger.error(f"[{self.name}] Session error: {event.reason}")
            await self._emit(self._callbacks.on_error, event.reason)

        elif kind == EventKind.CLOSED:
            await self._handle_close(event.reason)

        elif kind == EventKind.OPENED:
            logger.debug(f"[{self.name}] Remote acknowledged setup")

    async def _handle_close(self, reason: str) -> None:
        connection, self._connection = self._connection, None
        if self._intentional_close:
            logger.info(f"[{self.name}] Session disconnected successfully.")
            return
        if connection is not None:
            # Release the dead transport before reconnecting
            try:
                await connection.close()
            except Exception as e:
                logger.warning(f"[{self.name}] Error while closing dropped connection: {e}")

        logger.warning(
            f"[{self.name}] Session closed unexpectedly. Reason: {reason or 'Connection lost'}"
        )
        if is_handle_invalid(reason):
            self._reconnect.clear_handle()

        if self._reconnect.exhausted:
            self._reconnect.give_up()
            self._cancel_timeout()
            await self._emit(
                self._callbacks.on_close, reason or "Max reconnection attempts reached"
            )
            return

        delay = self._reconnect.begin_attempt()
        await self._emit(self._callbacks.on_reconnecting)
        self._reconnect.schedule(delay, self._attempt_reconnect)

    async def _attempt_reconnect(self) -> None:
        if self._intentional_close or self._connection is not None:
            return
        try:
            await self._open()
        except Exception as e:
            logger.error(
                f"[{self.name}] Reconnection attempt {self._reconnect.attempts} failed: {e}"
            )
            await self._handle_close(str(e))
            return

        if self._intentional_close:
            # disconnect() raced the handshake
            await self.disconnect()
            return

        if self._pending_request is not None:
            # Drop the partial answer before asking again, otherwise the new
            # answer appends to stale text.
            self._accumulator.clear()
            logger.info(f"[{self.name}] Re-issuing pending request after reconnect")
            await self._issue(self._pending_request)
        elif self._accumulator.turn_open:
            # The new connection never completes the old turn
            self._accumulator.clear()
            logger.info(f"[{self.name}] Abandoned turn left open by the dropped connection")
            await self._emit(self._callbacks.on_turn_abandoned)

    # ── Outbound ────────────────────────────────────────────────────────

    async def send_audio_chunk(self, data: str, mime_type: str) -> None:
        connection = self._connection
        if connection is None:
            logger.debug(f"[{self.name}] Cannot send audio. Session is not connected.")
            return
        try:
            await connection.send_audio(data, mime_type)
        except Exception as e:
            logger.error(f"[{self.name}] send_audio_chunk failed ({len(data)} b64 chars): {e}")

    async def send_video_frame(self, data: str) -> None:
        connection = self._connection
        if connection is None:
            logger.debug(f"[{self.name}] Cannot send frame. Session is not connected.")
            return
        try:
            await connection.send_video(data)
        except Exception as e:
            logger.error(f"[{self.name}] send_video_frame failed ({len(data)} b64 chars): {e}")

    async def send_text(self, text: str) -> None:
        connection = self._connection
        if connection is None:
            logger.error(f"[{self.name}] Cannot send text. Session is not connected.")
            return
        try:
            await connection.send_text(text)
            logger.info(f"[{self.name}] Sent text message: {text[:50]!r}")
        except Exception as e:
            logger.error(f"[{self.name}] send_text failed ({len(text)} chars): {e}")

    async def end_audio_stream(self) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            await connection.end_audio_stream()
            logger.info(f"[{self.name}] Audio stream end signal sent.")
        except Exception as e:
            logger.error(f"[{self.name}] end_audio_stream failed: {e}")

    async def request(self, text: str, timeout: Optional[float] = None) -> None:
        """
        Send `text` and await its answer through on_turn_complete. Survives a
        reconnect; gives up after `timeout` seconds with a synthetic completion.
        """
        self._pending_request = text
        await self._issue(text, timeout)

    async def _issue(self, text: str, timeout: Optional[float] = None) -> None:
        self._accumulator.expect_response()
        self._cancel_timeout()
        self._timeout_task = asyncio.create_task(
            self._expire_request(text, timeout if timeout is not None else self._response_timeout),
            name=f"response-timeout-{self.name}",
        )
        await self.send_text(text)

    async def _expire_request(self, text: str, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self._pending_request != text:
            return
        logger.warning(
            f"[{self.name}] No response within {timeout:.0f}s — forcing completion"
        )
        self._timeout_task = None
        self._pending_request = None
        self._accumulator.clear()
        await self._emit(self._callbacks.on_turn_complete, None)

    def _cancel_timeout(self) -> None:
        task, self._timeout_task = self._timeout_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ── Callback dispatch ───────────────────────────────────────────────

    async def _emit(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"[{self.name}] Callback error: {e}", exc_info=True)
