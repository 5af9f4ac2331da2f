"""
LiveCopilot — Configuration

Centralised settings from environment variables.
All tuneable constants live here — zero magic numbers in other files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())

load_dotenv()

# ── Bridge env-var naming: Gemini SDK reads GOOGLE_API_KEY ──────────────
_gemini_key = os.getenv("GEMINI_API_KEY", "")
if _gemini_key and not os.getenv("GOOGLE_API_KEY"):
    os.environ["GOOGLE_API_KEY"] = _gemini_key


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    )


# ---------------------------------------------------------------------------
# Gemini Live connection parameters
# ---------------------------------------------------------------------------

TRANSCRIPT_PROMPT = """You are transcribing audio from an interview.

When the speaker finishes talking (turn complete), transcribe their ENTIRE statement from start to finish. Accumulate all words spoken during this complete turn.

Do NOT respond with partial sentences or fragments. Wait for the complete turn, then provide everything.

If the turn contains no clear speech, do NOT respond.

Format: {"transcript": "[complete turn from start to finish]"}"""

REPLY_PROMPT = """You are interviewing for a software engineer position at a software engineering company.
Respond ONLY with a valid JSON object in the following format:
{
  "reply": "[Your response to the interviewer's question or statement. If the question is short, reply with a single sentence. If the question is more detailed, provide a more detailed response with examples and elaboration, but still be concise]"
}"""

GENERAL_PROMPT = """You are an interview copilot observing a live screen and listening to audio.
When the interviewer has finished speaking (turn complete), respond ONLY in the following format:

TRANSCRIPT:
[exact words spoken by interviewer]

REPLY:
[your response to the interviewer's question or statement]"""


@dataclass(frozen=True)
class LiveConfig:
    """API key and one-time connection parameters sent at handshake."""
    api_key: str = os.getenv("GEMINI_API_KEY", "")
    model: str = os.getenv("GEMINI_LIVE_MODEL", "gemini-2.5-flash-live-preview")
    # TEXT only — audio responses are not rendered
    response_modality: str = "TEXT"
    media_resolution: str = "MEDIA_RESOLUTION_MEDIUM"
    # VAD sensitivity 0.0–1.0 (higher = stricter about detecting speech end)
    vad_threshold: float = 0.6
    # Context-window compression
    compression_trigger_tokens: int = 25600
    compression_target_tokens: int = 12800
    transcript_prompt: str = TRANSCRIPT_PROMPT
    reply_prompt: str = REPLY_PROMPT
    general_prompt: str = GENERAL_PROMPT
    # Text submitted to the reply session for each queued transcript
    reply_request_template: str = 'Interviewer said: "{transcript}". Please provide your response.'

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


# ---------------------------------------------------------------------------
# Session lifecycle tunables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionConfig:
    max_reconnect_attempts: int = 3
    # Backoff: min(base * 2^(attempt-1), max)
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 5.0
    # Max wait for an expected response before a synthetic completion fires
    response_timeout: float = float(os.getenv("RESPONSE_TIMEOUT", "30"))
    # "retain" keeps partial text across an interruption, "discard" drops it
    interrupt_policy: str = os.getenv("INTERRUPT_POLICY", "retain")


# ---------------------------------------------------------------------------
# Streaming tunables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StreamingConfig:
    video_fps: float = 1.0
    audio_chunk_ms: int = 100
    # ~5s of audio at 100ms chunks
    audio_buffer_capacity: int = 50
    sample_rate: int = 16000
    jpeg_quality: int = 80

    @property
    def audio_mime_type(self) -> str:
        return f"audio/pcm;rate={self.sample_rate}"


# ---------------------------------------------------------------------------
# Durable local state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StorageConfig:
    state_dir: str = os.getenv(
        "COPILOT_STATE_DIR", os.path.join(os.path.expanduser("~"), ".livecopilot")
    )
    state_file: str = "state.json"
    handle_key: str = "gemini_session_handle"

    @property
    def state_path(self) -> str:
        return os.path.join(self.state_dir, self.state_file)


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
live_cfg = LiveConfig()
session_cfg = SessionConfig()
streaming_cfg = StreamingConfig()
storage_cfg = StorageConfig()
