"""
LiveCopilot — Media Pump

================================================================================
PRODUCER → COORDINATOR
================================================================================

The raw media producer (screen grabber, microphone) is external. It hands us
async iterators of either already-encoded payloads (base64 JPEG / base64 PCM
strings) or raw numpy arrays, which are encoded here:

  • video frames  — BGR uint8 arrays → JPEG via cv2.imencode → base64
  • audio chunks  — float32 [-1, 1] or int16 arrays → 16-bit PCM → base64

`StreamingCapture` pumps both iterators into a MediaSink (the coordinator),
throttling video to the configured FPS. A missing audio track degrades to
video-only with a warning; malformed payloads are skipped and logged.
================================================================================
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from typing import Any, AsyncIterator, Optional, Protocol, Union

import cv2
import numpy as np

from ..core.config import streaming_cfg

logger = logging.getLogger("copilot.capture")

MediaPayload = Union[str, bytes, np.ndarray]


class MediaSink(Protocol):
    def push_audio(self, data: str, mime_type: str = ...) -> None: ...
    def push_frame(self, data: str) -> None: ...
    def end_audio(self) -> None: ...


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def encode_pcm_chunk(samples: np.ndarray) -> str:
    """Encode mono samples as base64 little-endian 16-bit PCM."""
    audio = np.asarray(samples)
    if audio.size == 0:
        raise ValueError("empty audio chunk")
    if audio.ndim > 1:
        # Downmix to mono
        audio = audio.mean(axis=1).astype(audio.dtype)
    if np.issubdtype(audio.dtype, np.floating):
        audio = (np.clip(audio, -1.0, 1.0) * 32767.0).astype("<i2")
    else:
        audio = audio.astype("<i2")
    return base64.b64encode(audio.tobytes()).decode("ascii")


def encode_jpeg_frame(frame: np.ndarray, quality: int = streaming_cfg.jpeg_quality) -> str:
    """Encode a BGR (or grayscale) uint8 frame as base64 JPEG."""
    if frame is None or frame.size == 0:
        raise ValueError("empty frame")
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("cv2.imencode failed")
    return base64.b64encode(buf.tobytes()).decode("ascii")


def _as_base64(payload: Any) -> str:
    if isinstance(payload, bytes):
        return base64.b64encode(payload).decode("ascii")
    if isinstance(payload, str):
        if not payload:
            raise ValueError("empty payload")
        # Validate only; the transport decodes it again
        base64.b64decode(payload, validate=True)
        return payload
    raise TypeError(f"unsupported payload type {type(payload).__name__}")


# ---------------------------------------------------------------------------
# Pump
# ---------------------------------------------------------------------------

class StreamingCapture:
    """
    Forwards producer output to a MediaSink until stopped or exhausted.

    Usage:
        capture = StreamingCapture(coordinator, video=frames(), audio=chunks())
        await capture.start()
        ...
        await capture.stop()
    """

    def __init__(
        self,
        sink: MediaSink,
        video: Optional[AsyncIterator[MediaPayload]] = None,
        audio: Optional[AsyncIterator[MediaPayload]] = None,
        fps: float = streaming_cfg.video_fps,
        jpeg_quality: int = streaming_cfg.jpeg_quality,
        mime_type: str = streaming_cfg.audio_mime_type,
    ) -> None:
        self._sink = sink
        self._video = video
        self._audio = audio
        self._interval = 1.0 / fps if fps > 0 else 0.0
        self._jpeg_quality = jpeg_quality
        self._mime_type = mime_type
        self._tasks: list = []
        self._active = False

        self.frames_forwarded = 0
        self.frames_skipped = 0
        self.audio_forwarded = 0
        self.malformed = 0

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def video_only(self) -> bool:
        return self._audio is None

    async def start(self) -> None:
        if self._active:
            return
        self._active = True
        if self._video is not None:
            self._tasks.append(asyncio.create_task(self._pump_video(), name="capture-video"))
        if self._audio is not None:
            self._tasks.append(asyncio.create_task(self._pump_audio(), name="capture-audio"))
        else:
            logger.warning("No audio track available — streaming video only")
        logger.info(
            f"Capture started (video={'on' if self._video is not None else 'off'}, "
            f"audio={'on' if self._audio is not None else 'off'})"
        )

    async def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        for task in self._tasks:
            if task is not asyncio.current_task():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._audio is not None:
            self._sink.end_audio()
        logger.info(
            f"Capture stopped — frames={self.frames_forwarded} audio={self.audio_forwarded} "
            f"skipped={self.frames_skipped} malformed={self.malformed}"
        )

    async def wait(self) -> None:
        """Wait until every producer is exhausted."""
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _pump_video(self) -> None:
        last_sent = float("-inf")
        async for payload in self._video:
            if not self._active:
                break
            now = time.monotonic()
            if now - last_sent < self._interval:
                self.frames_skipped += 1
                continue
            try:
                if isinstance(payload, np.ndarray):
                    data = encode_jpeg_frame(payload, self._jpeg_quality)
                else:
                    data = _as_base64(payload)
            except (ValueError, TypeError, binascii.Error) as e:
                self.malformed += 1
                logger.warning(f"Skipping malformed video frame: {e}")
                continue
            last_sent = now
            self.frames_forwarded += 1
            self._sink.push_frame(data)

    async def _pump_audio(self) -> None:
        async for payload in self._audio:
            if not self._active:
                break
            try:
                if isinstance(payload, np.ndarray):
                    data = encode_pcm_chunk(payload)
                else:
                    data = _as_base64(payload)
            except (ValueError, TypeError, binascii.Error) as e:
                self.malformed += 1
                logger.warning(f"Skipping malformed audio chunk: {e}")
                continue
            self.audio_forwarded += 1
            self._sink.push_audio(data, self._mime_type)
