"""
LiveCopilot — Response Parsing

Completed turns arrive as raw model text in one of two layouts:

  • Structured object — a single JSON object with a "transcript" and/or
    "reply" key, optionally fenced in a markdown code block:

        ```json
        {"transcript": "hi there"}
        ```

  • Labeled plaintext — sections introduced by TRANSCRIPT: and REPLY:

        TRANSCRIPT:
        What is your experience with Python?

        REPLY:
        I have used it for five years.

Parsers are tried in a fixed order. A turn matching neither layout raises
ResponseParseError; callers log it and skip the turn.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Sequence

from ..core.errors import ResponseParseError
from ..core.interfaces import ResponseParser
from ..core.models import ParsedTurn

logger = logging.getLogger("copilot.parsing")

# Shown instead of a reply that leaked the layout labels
LEAKED_LABEL_PLACEHOLDER = "No reply found - model did not follow format"

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?")
_TRANSCRIPT_PATTERN = re.compile(r"TRANSCRIPT:\s*(.+?)(?=\n\s*REPLY:)", re.IGNORECASE | re.DOTALL)
_TRANSCRIPT_ONLY_PATTERN = re.compile(r"TRANSCRIPT:\s*(.+)", re.IGNORECASE | re.DOTALL)
_REPLY_PATTERN = re.compile(r"REPLY:\s*(.+)", re.IGNORECASE | re.DOTALL)
_LEAKED_LABEL_PATTERN = re.compile(r"^\s*(TRANSCRIPT|REPLY):", re.IGNORECASE | re.MULTILINE)


def strip_code_fence(text: str) -> str:
    """Remove markdown code-fence markers (```json / ```) and surrounding whitespace."""
    return _FENCE_PATTERN.sub("", text).strip()


def has_leaked_labels(text: str) -> bool:
    return bool(_LEAKED_LABEL_PATTERN.search(text))


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class FencedJsonParser:
    """Structured-object layout: {"transcript": ...} / {"reply": ...}."""

    name = "json"

    def parse(self, text: str) -> ParsedTurn:
        body = strip_code_fence(text)
        obj = self._load_object(body)
        transcript = _clean(obj.get("transcript"))
        reply = _clean(obj.get("reply"))
        if transcript is None and reply is None:
            raise ResponseParseError("JSON object has no 'transcript' or 'reply' text")
        return ParsedTurn(transcript=transcript, reply=reply, layout=self.name)

    @staticmethod
    def _load_object(body: str) -> dict:
        try:
            obj = json.loads(body)
        except ValueError:
            # Tolerate prose around a single object
            start, end = body.find("{"), body.rfind("}")
            if start == -1 or end <= start:
                raise ResponseParseError("No JSON object found")
            try:
                obj = json.loads(body[start:end + 1])
            except ValueError as e:
                raise ResponseParseError(f"Malformed JSON object: {e}") from e
        if not isinstance(obj, dict):
            raise ResponseParseError(f"Expected a JSON object, got {type(obj).__name__}")
        return obj


class LabeledTextParser:
    """Labeled plaintext layout: TRANSCRIPT: ... REPLY: ..."""

    name = "labeled"

    def parse(self, text: str) -> ParsedTurn:
        transcript_match = _TRANSCRIPT_PATTERN.search(text)
        reply_match = _REPLY_PATTERN.search(text)
        if transcript_match is None and reply_match is None:
            transcript_match = _TRANSCRIPT_ONLY_PATTERN.search(text)
        if transcript_match is None and reply_match is None:
            raise ResponseParseError("No TRANSCRIPT:/REPLY: labels found")
        return ParsedTurn(
            transcript=_clean(transcript_match.group(1)) if transcript_match else None,
            reply=_clean(reply_match.group(1)) if reply_match else None,
            layout=self.name,
        )


class ResponseParserChain:
    """
    Tries each parser in order and returns the first successful result.

    A reply that itself still contains layout labels is replaced with
    LEAKED_LABEL_PLACEHOLDER so raw protocol text never reaches the user.
    """

    def __init__(self, parsers: Optional[Sequence[ResponseParser]] = None) -> None:
        self._parsers: List[ResponseParser] = list(
            parsers if parsers is not None else (FencedJsonParser(), LabeledTextParser())
        )

    @property
    def parsers(self) -> List[ResponseParser]:
        return list(self._parsers)

    def parse(self, text: str) -> ParsedTurn:
        errors: List[str] = []
        for parser in self._parsers:
            try:
                parsed = parser.parse(text)
            except ResponseParseError as e:
                errors.append(f"{parser.name}: {e}")
                continue
            return self._sanitize(parsed)
        raise ResponseParseError("; ".join(errors) or "no parsers configured")

    def try_parse(self, text: str, source: str = "") -> Optional[ParsedTurn]:
        """parse() that logs and returns None instead of raising."""
        try:
            return self.parse(text)
        except ResponseParseError as e:
            logger.error(f"[{source}] Unparseable turn ({e}): {text[:120]!r}")
            return None

    @staticmethod
    def _sanitize(parsed: ParsedTurn) -> ParsedTurn:
        if parsed.reply and has_leaked_labels(parsed.reply):
            logger.warning(f"Reply leaked layout labels — replacing: {parsed.reply[:80]!r}")
            return ParsedTurn(
                transcript=parsed.transcript,
                reply=LEAKED_LABEL_PLACEHOLDER,
                layout=parsed.layout,
            )
        return parsed
