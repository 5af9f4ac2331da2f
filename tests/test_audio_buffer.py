from __future__ import annotations

import pytest

from copilot.processing.audio_buffer import AudioChunk, AudioRingBuffer


def _chunk(i: int) -> AudioChunk:
    return AudioChunk(data=f"chunk-{i}", mime_type="audio/pcm;rate=16000")


def test_buffer_is_bounded_and_drops_oldest() -> None:
    buf = AudioRingBuffer(capacity=50)
    for i in range(60):
        buf.append(_chunk(i))

    assert len(buf) == 50
    assert buf.dropped == 10
    drained = buf.drain()
    assert [c.data for c in drained] == [f"chunk-{i}" for i in range(10, 60)]


def test_drain_returns_oldest_first_and_empties() -> None:
    buf = AudioRingBuffer(capacity=5)
    for i in range(3):
        buf.append(_chunk(i))

    assert [c.data for c in buf.drain()] == ["chunk-0", "chunk-1", "chunk-2"]
    assert len(buf) == 0
    assert buf.drain() == []


def test_default_capacity() -> None:
    assert AudioRingBuffer().capacity == 50


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AudioRingBuffer(capacity=0)
