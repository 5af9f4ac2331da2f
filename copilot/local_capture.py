"""
LiveCopilot — Local Capture Runner

================================================================================
CAMERA / SCREEN + MICROPHONE → COPILOT, WITHOUT A BROWSER
================================================================================

The WebSocket server expects a browser to capture and encode media. This
runner does the capture on the local machine instead:

  • video  — default camera (cv2.VideoCapture) or the primary monitor (mss)
  • audio  — default microphone via sounddevice, 16 kHz mono int16

Raw frames and samples are handed to StreamingCapture, which encodes and
pumps them into a copilot run. Transcripts and replies are printed.

Usage:
  livecopilot-capture --video screen
  livecopilot-capture --video camera --camera-index 1 --mode single
  livecopilot-capture --video screen --no-audio
================================================================================
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

import cv2
import numpy as np

from .core.config import streaming_cfg
from .core.models import AppStatus
from .processing.capture import MediaPayload, StreamingCapture
from .services.coordinator import CopilotRun
from .services.registry import MODES

logger = logging.getLogger("copilot.local")


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

async def camera_frames(index: int = 0) -> AsyncIterator[np.ndarray]:
    # Opening the device blocks for about a second
    cap = await asyncio.to_thread(cv2.VideoCapture, index)
    if not cap.isOpened():
        logger.error(f"Camera {index} could not be opened")
        return
    try:
        while True:
            ok, frame = await asyncio.to_thread(cap.read)
            if not ok:
                logger.warning(f"Camera {index} stopped delivering frames")
                break
            yield frame
    finally:
        cap.release()


async def screen_frames(interval: float = 1.0 / streaming_cfg.video_fps) -> AsyncIterator[np.ndarray]:
    import mss

    with mss.mss() as sct:
        monitor = sct.monitors[1] if len(sct.monitors) > 1 else sct.monitors[0]
        while True:
            shot = await asyncio.to_thread(sct.grab, monitor)
            # BGRA → BGR
            yield np.asarray(shot)[:, :, :3]
            await asyncio.sleep(interval)


async def microphone_chunks(
    sample_rate: int = streaming_cfg.sample_rate,
    chunk_ms: int = streaming_cfg.audio_chunk_ms,
) -> AsyncIterator[np.ndarray]:
    import sounddevice as sd

    loop = asyncio.get_running_loop()
    chunks: asyncio.Queue = asyncio.Queue(maxsize=streaming_cfg.audio_buffer_capacity)

    def _enqueue(block: np.ndarray) -> None:
        if chunks.full():
            chunks.get_nowait()
        chunks.put_nowait(block)

    def callback(indata, frames, time_info, status) -> None:
        if status:
            logger.debug(f"Microphone status: {status}")
        loop.call_soon_threadsafe(_enqueue, indata[:, 0].copy())

    blocksize = int(sample_rate * chunk_ms / 1000)
    with sd.InputStream(
        samplerate=sample_rate,
        channels=1,
        dtype="int16",
        blocksize=blocksize,
        callback=callback,
    ):
        logger.info(f"Microphone open ({sample_rate} Hz, {chunk_ms} ms blocks)")
        while True:
            yield await chunks.get()


# ---------------------------------------------------------------------------
# Console display
# ---------------------------------------------------------------------------

class ConsoleDisplay:
    """DisplayCallbacks that print to the terminal."""

    def __init__(self) -> None:
        self.stopped = asyncio.Event()

    def on_transcript(self, text: str, is_final: bool) -> None:
        if is_final:
            print(f"\n[Interviewer] {text}")

    def on_reply(self, text: str) -> None:
        print(f"[Suggested]   {text}\n")

    def on_partial_reply(self, text: str) -> None:
        pass

    def on_error(self, message: str) -> None:
        logger.error(message)

    def on_status_change(self, status: AppStatus) -> None:
        logger.info(f"Status: {status.value}")
        if status == AppStatus.ERROR:
            self.stopped.set()

    def on_reconnecting(self) -> None:
        logger.warning("Connection lost, reconnecting...")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

async def run_local(
    copilot: CopilotRun,
    video: Optional[AsyncIterator[MediaPayload]] = None,
    audio: Optional[AsyncIterator[MediaPayload]] = None,
    fps: float = streaming_cfg.video_fps,
    stop_event: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """
    Start the copilot, pump the sources into it until they are exhausted or
    `stop_event` is set, then stop everything. Returns the run summary.
    """
    if not await copilot.start():
        return copilot.snapshot()

    capture = StreamingCapture(copilot, video=video, audio=audio, fps=fps)
    await capture.start()
    waiters: List[asyncio.Task] = [asyncio.create_task(capture.wait())]
    if stop_event is not None:
        waiters.append(asyncio.create_task(stop_event.wait()))
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        await capture.stop()
        summary = await copilot.stop()
    return summary


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="livecopilot-capture",
        description="Stream local camera/screen and microphone to the live copilot.",
    )
    parser.add_argument("--mode", choices=sorted(MODES), default="dual")
    parser.add_argument("--video", choices=["screen", "camera", "none"], default="screen")
    parser.add_argument("--camera-index", type=int, default=0)
    parser.add_argument("--no-audio", action="store_true", help="stream video only")
    parser.add_argument("--fps", type=float, default=streaming_cfg.video_fps)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    async def _run() -> None:
        display = ConsoleDisplay()
        copilot = MODES[args.mode](f"local-{uuid.uuid4().hex[:8]}", display=display)

        if args.video == "camera":
            video = camera_frames(args.camera_index)
        elif args.video == "screen":
            video = screen_frames(1.0 / args.fps if args.fps > 0 else 1.0)
        else:
            video = None
        audio = None if args.no_audio else microphone_chunks()

        summary = await run_local(copilot, video, audio, fps=args.fps, stop_event=display.stopped)
        logger.info(
            f"Run finished: {summary['telemetry']['transcripts']} transcript(s), "
            f"{summary['telemetry']['replies']} reply(ies)"
        )

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
