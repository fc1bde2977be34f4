"""Append-only WU event log (`wu-events.jsonl`).

The log is the authoritative source for WU status. Each line is one JSON
event; replaying the file in order yields the current status of every WU.
Appends are serialized across processes with a lock directory.
"""

from __future__ import annotations

import json
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Literal, TypedDict

from laneflow.core.errors import WrongWuStatusError
from laneflow.core.models import WuStatus
from laneflow.logging_config import get_logger
from laneflow.utils import format_timestamp, resolve_now

logger = get_logger(__name__)

EVENTS_FILENAME = "wu-events.jsonl"

EventType = Literal["create", "claim", "block", "unblock", "complete", "release", "checkpoint"]

_STATUS_AFTER: dict[str, WuStatus] = {
    "create": "ready",
    "claim": "in_progress",
    "block": "blocked",
    "unblock": "in_progress",
    "complete": "done",
    "release": "ready",
}

_REQUIRED_BEFORE: dict[str, tuple[WuStatus | None, ...]] = {
    "create": (None,),
    "claim": (None, "ready"),
    "block": ("in_progress",),
    "unblock": ("blocked",),
    "complete": ("in_progress",),
    "release": ("in_progress", "blocked"),
}


class StateStoreError(RuntimeError):
    """Raised when the event log cannot be read or appended safely."""


class _EventPayload(TypedDict, total=False):
    type: str
    wu_id: str
    lane: str
    title: str
    reason: str
    timestamp: str


@dataclass(frozen=True)
class WuEvent:
    type: EventType
    wu_id: str
    timestamp: str
    lane: str | None = None
    title: str | None = None
    reason: str | None = None

    def to_payload(self) -> _EventPayload:
        payload: _EventPayload = {"type": self.type, "wu_id": self.wu_id, "timestamp": self.timestamp}
        if self.lane is not None:
            payload["lane"] = self.lane
        if self.title is not None:
            payload["title"] = self.title
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class WuStoreEntry:
    """Replayed state for one WU."""

    wu_id: str
    status: WuStatus
    lane: str | None
    updated_at: str


class WuStateStore:
    """Durable WU status store backed by a JSONL event log."""

    def __init__(
        self,
        *,
        state_dir: Path,
        lock_retry_seconds: float = 0.01,
        lock_wait_seconds: float = 5.0,
        lock_stale_seconds: int = 30,
    ) -> None:
        self._events_path = state_dir / EVENTS_FILENAME
        self._lock_path = state_dir / f"{EVENTS_FILENAME}.lock"
        self._lock_retry_seconds = lock_retry_seconds
        self._lock_wait_seconds = lock_wait_seconds
        self._lock_stale_seconds = lock_stale_seconds

    @property
    def events_path(self) -> Path:
        return self._events_path

    def events(self) -> list[WuEvent]:
        """Return every event in log order."""
        if not self._events_path.exists():
            return []
        events: list[WuEvent] = []
        for line_no, line in enumerate(self._events_path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as exc:
                raise StateStoreError(f"invalid event JSON at {self._events_path}:{line_no}") from exc
            events.append(_event_from_payload(raw, f"{self._events_path}:{line_no}"))
        return events

    def replay(self) -> dict[str, WuStoreEntry]:
        entries: dict[str, WuStoreEntry] = {}
        for event in self.events():
            status = _STATUS_AFTER.get(event.type)
            if status is None:
                continue
            previous = entries.get(event.wu_id)
            lane = event.lane or (previous.lane if previous else None)
            entries[event.wu_id] = WuStoreEntry(
                wu_id=event.wu_id, status=status, lane=lane, updated_at=event.timestamp
            )
        return entries

    def get(self, wu_id: str) -> WuStoreEntry | None:
        return self.replay().get(wu_id)

    def create(self, wu_id: str, *, lane: str, title: str, now: datetime | None = None) -> WuEvent:
        return self._append("create", wu_id, lane=lane, title=title, now=now)

    def claim(self, wu_id: str, *, lane: str, title: str | None = None, now: datetime | None = None) -> WuEvent:
        return self._append("claim", wu_id, lane=lane, title=title, now=now)

    def block(self, wu_id: str, *, reason: str, now: datetime | None = None) -> WuEvent:
        return self._append("block", wu_id, reason=reason, now=now)

    def unblock(self, wu_id: str, *, now: datetime | None = None) -> WuEvent:
        return self._append("unblock", wu_id, now=now)

    def complete(self, wu_id: str, *, now: datetime | None = None) -> WuEvent:
        return self._append("complete", wu_id, now=now)

    def release(self, wu_id: str, *, reason: str, now: datetime | None = None) -> WuEvent:
        return self._append("release", wu_id, reason=reason, now=now)

    def checkpoint(self, wu_id: str, *, reason: str, now: datetime | None = None) -> WuEvent:
        return self._append("checkpoint", wu_id, reason=reason, now=now)

    def _append(
        self,
        event_type: EventType,
        wu_id: str,
        *,
        lane: str | None = None,
        title: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> WuEvent:
        event = WuEvent(
            type=event_type,
            wu_id=wu_id,
            timestamp=format_timestamp(resolve_now(now)),
            lane=lane,
            title=title,
            reason=reason,
        )
        with self._mutation_guard():
            current = self.replay().get(wu_id)
            allowed = _REQUIRED_BEFORE.get(event_type)
            current_status = current.status if current else None
            if allowed is not None and current_status not in allowed:
                expected = " or ".join(str(s) for s in allowed if s is not None)
                raise WrongWuStatusError(
                    f"Cannot record {event_type} for {wu_id}: status is {current_status}, expected {expected}"
                )
            self._events_path.parent.mkdir(parents=True, exist_ok=True)
            with self._events_path.open("a", encoding="utf-8") as file_handle:
                file_handle.write(json.dumps(event.to_payload(), sort_keys=True) + "\n")
                file_handle.flush()
                os.fsync(file_handle.fileno())
        logger.debug("Recorded %s event for %s", event_type, wu_id)
        return event

    @contextmanager
    def _mutation_guard(self) -> Iterator[None]:
        start = time.monotonic()
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            try:
                self._lock_path.mkdir(exist_ok=False)
                break
            except FileExistsError:
                self._break_stale_lock_if_needed()
                if time.monotonic() - start > self._lock_wait_seconds:
                    raise StateStoreError(f"timed out waiting for event log lock: {self._lock_path}")
                time.sleep(self._lock_retry_seconds)

        try:
            yield
        finally:
            self._lock_path.rmdir()

    def _break_stale_lock_if_needed(self) -> None:
        try:
            stat_result = self._lock_path.stat()
        except FileNotFoundError:
            return

        age_seconds = time.time() - stat_result.st_mtime
        if age_seconds <= self._lock_stale_seconds:
            return

        try:
            self._lock_path.rmdir()
        except OSError:
            return


def _event_from_payload(raw: object, where: str) -> WuEvent:
    if not isinstance(raw, dict):
        raise StateStoreError(f"event must be an object at {where}")
    event_type = raw.get("type")
    wu_id = raw.get("wu_id")
    timestamp = raw.get("timestamp")
    if event_type not in (*_STATUS_AFTER, "checkpoint"):
        raise StateStoreError(f"unknown event type {event_type!r} at {where}")
    if not isinstance(wu_id, str) or not isinstance(timestamp, str):
        raise StateStoreError(f"event missing wu_id/timestamp at {where}")
    return WuEvent(
        type=event_type,
        wu_id=wu_id,
        timestamp=timestamp,
        lane=raw.get("lane"),
        title=raw.get("title"),
        reason=raw.get("reason"),
    )
