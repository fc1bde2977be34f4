"""Completion stamps: one `<WU-ID>.done` file per finished WU.

A stamp is the durable, idempotent signal that a WU reached `done`.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from laneflow.utils import format_timestamp, resolve_now

STAMP_SUFFIX = ".done"


@dataclass(frozen=True)
class Stamp:
    id: str
    completed_at: str


def stamp_path(stamps_dir: Path, wu_id: str) -> Path:
    return stamps_dir / f"{wu_id}{STAMP_SUFFIX}"


def has_stamp(stamps_dir: Path, wu_id: str) -> bool:
    return stamp_path(stamps_dir, wu_id).exists()


def read_stamp(stamps_dir: Path, wu_id: str) -> Stamp | None:
    path = stamp_path(stamps_dir, wu_id)
    if not path.exists():
        return None
    payload = json.loads(path.read_text(encoding="utf-8"))
    return Stamp(id=str(payload["id"]), completed_at=str(payload["completed_at"]))


def write_stamp(stamps_dir: Path, wu_id: str, now: datetime | None = None) -> bool:
    """Create the stamp for `wu_id`. Returns False when it already exists."""
    path = stamp_path(stamps_dir, wu_id)
    stamps_dir.mkdir(parents=True, exist_ok=True)
    payload = {"id": wu_id, "completed_at": format_timestamp(resolve_now(now))}
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, sort_keys=True) + "\n")
    return True


def list_stamped_ids(stamps_dir: Path) -> list[str]:
    if not stamps_dir.is_dir():
        return []
    return sorted(p.name[: -len(STAMP_SUFFIX)] for p in stamps_dir.glob(f"*{STAMP_SUFFIX}"))
