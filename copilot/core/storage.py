"""
LiveCopilot — Resumption Handle Store

Persists the remote's session-resumption token to a small JSON file so it
survives a full process restart. One fixed key; overwritten on every newer
handle, cleared on remote invalidation or explicit user reset.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

from .config import storage_cfg

logger = logging.getLogger("copilot.storage")


class ResumptionStore:
    """File-backed key/value store holding the resumption handle."""

    def __init__(
        self,
        path: Optional[str] = None,
        key: str = storage_cfg.handle_key,
    ) -> None:
        self._path = path or storage_cfg.state_path
        self._key = key

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> Optional[str]:
        handle = self._read().get(self._key)
        return handle if isinstance(handle, str) and handle else None

    def save(self, handle: str) -> None:
        if not handle:
            return
        state = self._read()
        if state.get(self._key) == handle:
            return
        state[self._key] = handle
        self._write(state)
        logger.info(f"Resumption handle saved ({handle[:12]}...)")

    def clear(self) -> None:
        state = self._read()
        if self._key not in state:
            return
        state.pop(self._key, None)
        self._write(state)
        logger.info("Resumption handle cleared")

    # ── File I/O ────────────────────────────────────────────────────────

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable state file {self._path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, state: Dict[str, Any]) -> None:
        directory = os.path.dirname(self._path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f)
            os.replace(tmp_path, self._path)
        except OSError as e:
            logger.error(f"Failed to write state file {self._path}: {e}")


class MemoryResumptionStore(ResumptionStore):
    """In-process store for runs that must not touch disk."""

    def __init__(self, handle: Optional[str] = None) -> None:
        super().__init__(path="", key=storage_cfg.handle_key)
        self._state: Dict[str, Any] = {}
        if handle:
            self._state[self._key] = handle

    def _read(self) -> Dict[str, Any]:
        return dict(self._state)

    def _write(self, state: Dict[str, Any]) -> None:
        self._state = dict(state)
