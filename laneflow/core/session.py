"""Session adapter: reports whether an interactive agent session owns a WU."""

from __future__ import annotations

import json
from pathlib import Path

from laneflow.core.models import SessionState
from laneflow.logging_config import get_logger

logger = get_logger(__name__)


class FileSessionReader:
    """Reads `{"session_id": ..., "wu_id": ..., "active": ...}` from a JSON file.

    A missing or unreadable file means no active session.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def __call__(self, wu_id: str | None) -> SessionState:
        if not self._path.exists():
            return SessionState()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self._path, exc)
            return SessionState()
        if not isinstance(payload, dict) or not payload.get("active"):
            return SessionState()
        owner = payload.get("wu_id")
        if wu_id is not None and owner is not None and owner != wu_id:
            return SessionState()
        session_id = payload.get("session_id")
        return SessionState(is_active=True, session_id=str(session_id) if session_id else None)


def inactive_session(_wu_id: str | None) -> SessionState:
    return SessionState()
