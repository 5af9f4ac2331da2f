"""
LiveCopilot — Audio Ring Buffer

Holds audio chunks captured while the transcription session has an open turn.
Bounded: when full, the oldest chunk is dropped to admit the newest so the
capture loop never blocks.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List

from ..core.config import streaming_cfg

logger = logging.getLogger("copilot.capture")


@dataclass(frozen=True)
class AudioChunk:
    data: str          # base64 PCM
    mime_type: str


class AudioRingBuffer:
    """Sliding window of the most recent `capacity` chunks."""

    def __init__(self, capacity: int = streaming_cfg.audio_buffer_capacity) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._chunks: Deque[AudioChunk] = deque(maxlen=capacity)
        self.dropped: int = 0

    @property
    def capacity(self) -> int:
        return self._chunks.maxlen or 0

    def __len__(self) -> int:
        return len(self._chunks)

    def append(self, chunk: AudioChunk) -> None:
        if len(self._chunks) == self._chunks.maxlen:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 50 == 0:
                logger.warning(f"Audio buffer full — dropped {self.dropped} oldest chunk(s)")
        self._chunks.append(chunk)

    def drain(self) -> List[AudioChunk]:
        """Return all chunks oldest-first and empty the buffer."""
        chunks = list(self._chunks)
        self._chunks.clear()
        return chunks

    def clear(self) -> None:
        self._chunks.clear()
