"""Per-WU mutual exclusion for cleanup-class operations.

A lock is a JSON file created with O_EXCL. Holders that died (same host, pid
gone) or that held the lock longer than the stale window are broken so a
crashed process never blocks cleanup forever.
"""

from __future__ import annotations

import json
import os
import socket
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, TypedDict

from laneflow.core.errors import CleanupLockedError
from laneflow.logging_config import get_logger
from laneflow.utils import format_timestamp, resolve_now

logger = get_logger(__name__)

CLEANUP_LOCK_TIMEOUT_SECONDS = 30.0
CLEANUP_LOCK_STALE_SECONDS = 5 * 60
LOCK_POLL_INTERVAL_SECONDS = 0.5


class _LockPayload(TypedDict):
    wu_id: str
    lock_id: str
    created_at: str
    pid: int
    hostname: str
    worktree_path: str | None


@dataclass(frozen=True)
class CleanupLockInfo:
    wu_id: str
    lock_id: str
    created_at: datetime
    pid: int
    hostname: str
    worktree_path: str | None = None


def cleanup_lock_path(locks_dir: Path, wu_id: str) -> Path:
    return locks_dir / f"cleanup-{wu_id.lower()}.lock"


def read_lock_info(path: Path) -> CleanupLockInfo | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return CleanupLockInfo(
            wu_id=str(payload["wu_id"]),
            lock_id=str(payload["lock_id"]),
            created_at=datetime.fromisoformat(str(payload["created_at"])),
            pid=int(payload["pid"]),
            hostname=str(payload["hostname"]),
            worktree_path=payload.get("worktree_path"),
        )
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as exc:
        logger.warning("Unreadable cleanup lock %s: %s", path, exc)
        return None


def is_lock_stale(info: CleanupLockInfo, now: datetime | None = None) -> bool:
    age = (resolve_now(now) - info.created_at).total_seconds()
    return age > CLEANUP_LOCK_STALE_SECONDS


def is_zombie_lock(info: CleanupLockInfo) -> bool:
    """True when the holder ran on this host and its pid no longer exists."""
    if info.hostname != socket.gethostname():
        return False
    try:
        os.kill(info.pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


def _try_create(path: Path, payload: _LockPayload) -> bool:
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, sort_keys=True))
        handle.flush()
        os.fsync(handle.fileno())
    return True


def _break_if_abandoned(path: Path) -> None:
    info = read_lock_info(path)
    if info is None:
        # Unreadable or half-written lock: only break it once it is old.
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return
        if age <= CLEANUP_LOCK_STALE_SECONDS:
            return
        reason = "unreadable"
    elif is_zombie_lock(info):
        reason = f"holder pid {info.pid} is gone"
    elif is_lock_stale(info):
        reason = "older than stale window"
    else:
        return

    # Move the lock aside first, then confirm it is the one judged abandoned.
    tombstone = path.with_name(f"{path.name}.{uuid.uuid4().hex}.broken")
    try:
        os.rename(path, tombstone)
    except FileNotFoundError:
        return
    moved = read_lock_info(tombstone)
    judged_id = info.lock_id if info else None
    if (moved.lock_id if moved else None) != judged_id:
        logger.info("Cleanup lock %s changed hands before it could be broken", path)
        _restore(tombstone, path)
        return
    logger.warning("Breaking cleanup lock %s (%s)", path, reason)
    tombstone.unlink(missing_ok=True)


def _restore(tombstone: Path, path: Path) -> None:
    try:
        os.link(tombstone, path)
    except FileExistsError:
        logger.warning("Cleanup lock %s was re-acquired; dropping the displaced lock", path)
    except OSError as exc:
        logger.warning("Could not restore cleanup lock %s: %s", path, exc)
    tombstone.unlink(missing_ok=True)


def _release(path: Path, lock_id: str) -> None:
    info = read_lock_info(path)
    if info is None or info.lock_id != lock_id:
        logger.warning("Cleanup lock %s no longer owned by this process", path)
        return
    try:
        path.unlink()
    except FileNotFoundError:
        return


@contextmanager
def cleanup_lock(
    locks_dir: Path,
    wu_id: str,
    *,
    worktree_path: str | None = None,
    wait_seconds: float = CLEANUP_LOCK_TIMEOUT_SECONDS,
    poll_seconds: float = LOCK_POLL_INTERVAL_SECONDS,
) -> Iterator[CleanupLockInfo]:
    """Hold the cleanup lock for `wu_id` for the duration of the body.

    Raises:
        CleanupLockedError: another live holder kept the lock past `wait_seconds`.
    """
    locks_dir.mkdir(parents=True, exist_ok=True)
    path = cleanup_lock_path(locks_dir, wu_id)
    now = resolve_now(None)
    payload: _LockPayload = {
        "wu_id": wu_id,
        "lock_id": str(uuid.uuid4()),
        "created_at": format_timestamp(now),
        "pid": os.getpid(),
        "hostname": socket.gethostname(),
        "worktree_path": worktree_path,
    }

    start = time.monotonic()
    while not _try_create(path, payload):
        _break_if_abandoned(path)
        if time.monotonic() - start > wait_seconds:
            holder = read_lock_info(path)
            held_by = f"pid {holder.pid} on {holder.hostname}" if holder else "unknown holder"
            raise CleanupLockedError(
                f"Cleanup for {wu_id} is already running ({held_by})",
                fix_command=f"rm {path}" if holder is None else None,
            )
        time.sleep(poll_seconds)

    info = CleanupLockInfo(
        wu_id=wu_id,
        lock_id=payload["lock_id"],
        created_at=now,
        pid=payload["pid"],
        hostname=payload["hostname"],
        worktree_path=worktree_path,
    )
    try:
        yield info
    finally:
        _release(path, info.lock_id)
