from __future__ import annotations

import base64

import numpy as np
import pytest

from copilot.processing.capture import StreamingCapture, encode_jpeg_frame, encode_pcm_chunk


class DummySink:
    def __init__(self) -> None:
        self.audio = []
        self.frames = []
        self.audio_ends = 0

    def push_audio(self, data: str, mime_type: str = "audio/pcm;rate=16000") -> None:
        self.audio.append((data, mime_type))

    def push_frame(self, data: str) -> None:
        self.frames.append(data)

    def end_audio(self) -> None:
        self.audio_ends += 1


async def _iterate(items):
    for item in items:
        yield item


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def test_encode_pcm_chunk_scales_floats_to_int16() -> None:
    data = encode_pcm_chunk(np.array([0.0, 1.0, -1.0, 2.0], dtype=np.float32))
    samples = np.frombuffer(base64.b64decode(data), dtype="<i2")
    assert samples.tolist() == [0, 32767, -32767, 32767]


def test_encode_pcm_chunk_downmixes_stereo() -> None:
    stereo = np.array([[1000, 3000], [-2000, -4000]], dtype=np.int16)
    samples = np.frombuffer(base64.b64decode(encode_pcm_chunk(stereo)), dtype="<i2")
    assert samples.tolist() == [2000, -3000]


def test_encode_pcm_chunk_rejects_empty() -> None:
    with pytest.raises(ValueError):
        encode_pcm_chunk(np.array([], dtype=np.float32))


def test_encode_jpeg_frame() -> None:
    frame = np.zeros((16, 16, 3), dtype=np.uint8)
    raw = base64.b64decode(encode_jpeg_frame(frame, quality=50))
    assert raw[:2] == b"\xff\xd8"


@pytest.mark.asyncio
async def test_pump_forwards_audio_and_frames() -> None:
    sink = DummySink()
    frame = np.zeros((8, 8, 3), dtype=np.uint8)
    capture = StreamingCapture(
        sink,
        video=_iterate([_b64(b"jpeg-1"), frame]),
        audio=_iterate([_b64(b"pcm-1"), np.zeros(160, dtype=np.float32)]),
        fps=0,
    )

    await capture.start()
    await capture.wait()
    await capture.stop()

    assert len(sink.frames) == 2
    assert sink.frames[0] == _b64(b"jpeg-1")
    assert [data for data, _ in sink.audio][0] == _b64(b"pcm-1")
    assert len(sink.audio) == 2
    assert sink.audio[0][1] == "audio/pcm;rate=16000"
    assert sink.audio_ends == 1


@pytest.mark.asyncio
async def test_video_is_throttled_to_fps() -> None:
    sink = DummySink()
    capture = StreamingCapture(sink, video=_iterate([_b64(b"a"), _b64(b"b"), _b64(b"c")]), fps=1)

    await capture.start()
    await capture.wait()
    await capture.stop()

    assert sink.frames == [_b64(b"a")]
    assert capture.frames_skipped == 2


@pytest.mark.asyncio
async def test_missing_audio_degrades_to_video_only() -> None:
    sink = DummySink()
    capture = StreamingCapture(sink, video=_iterate([_b64(b"a")]), audio=None, fps=0)

    await capture.start()
    await capture.wait()
    await capture.stop()

    assert capture.video_only
    assert sink.frames == [_b64(b"a")]
    assert sink.audio == []
    assert sink.audio_ends == 0


@pytest.mark.asyncio
async def test_malformed_payloads_are_skipped() -> None:
    sink = DummySink()
    capture = StreamingCapture(
        sink,
        video=_iterate(["not base64!!", 42, _b64(b"ok")]),
        audio=_iterate(["", _b64(b"pcm")]),
        fps=0,
    )

    await capture.start()
    await capture.wait()
    await capture.stop()

    assert sink.frames == [_b64(b"ok")]
    assert [data for data, _ in sink.audio] == [_b64(b"pcm")]
    assert capture.malformed == 3
