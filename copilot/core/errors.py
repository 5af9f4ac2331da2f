"""
LiveCopilot — Error Taxonomy

Transient errors are recovered by the reconnection controller, parse errors
are logged and skipped, fatal errors reach the user via on_error.
"""

from __future__ import annotations

import re

# Remote close/error texts that mean the resumption handle is unusable
_INVALID_HANDLE_PATTERN = re.compile(
    r"(handle|session)\s+(not\s+found|expired|is\s+invalid|invalid)"
    r"|invalid\s+(resumption\s+)?handle",
    re.IGNORECASE,
)


class CopilotError(Exception):
    """Base class for all LiveCopilot errors."""


class ConfigurationError(CopilotError):
    """Required configuration (e.g. the API key) is missing."""


class AlreadyConnectedError(CopilotError):
    """connect() was called on a session that already holds a connection."""


class LiveConnectionError(CopilotError, ConnectionError):
    """The remote rejected the handshake or the connection failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def is_handle_invalid(self) -> bool:
        return is_handle_invalid(self.message)


class ResponseParseError(CopilotError):
    """A completed turn did not match the expected response layout."""


def is_handle_invalid(reason: str) -> bool:
    """True if a remote close/error reason reports the resumption handle as unusable."""
    if not reason:
        return False
    return bool(_INVALID_HANDLE_PATTERN.search(reason))
