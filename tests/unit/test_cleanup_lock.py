"""Unit tests for the per-WU cleanup lock."""

import json
import socket
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from laneflow.core.errors import CleanupLockedError
from laneflow.core.integration.cleanup_lock import (
    CleanupLockInfo,
    _break_if_abandoned,
    cleanup_lock,
    cleanup_lock_path,
    is_lock_stale,
    read_lock_info,
)


def _write_lock(path: Path, *, pid: int, hostname: str, created_at: datetime, lock_id: str = "other") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "wu_id": "WU-1",
        "lock_id": lock_id,
        "created_at": created_at.isoformat(),
        "pid": pid,
        "hostname": hostname,
        "worktree_path": None,
    }
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.mark.unit
def test_lock_released_on_success_and_error(tmp_path: Path):
    path = cleanup_lock_path(tmp_path, "WU-1")

    with cleanup_lock(tmp_path, "WU-1", worktree_path="/repo/worktrees/core-wu-1") as info:
        assert path.exists()
        stored = read_lock_info(path)
        assert stored is not None
        assert stored.lock_id == info.lock_id
        assert stored.worktree_path == "/repo/worktrees/core-wu-1"
    assert not path.exists()

    with pytest.raises(RuntimeError):
        with cleanup_lock(tmp_path, "WU-1"):
            raise RuntimeError("boom")
    assert not path.exists()


@pytest.mark.unit
def test_lock_path_is_keyed_by_lowercase_id(tmp_path: Path):
    assert cleanup_lock_path(tmp_path, "WU-42") == tmp_path / "cleanup-wu-42.lock"


@pytest.mark.unit
def test_live_holder_times_out(tmp_path: Path):
    _write_lock(
        cleanup_lock_path(tmp_path, "WU-1"),
        pid=12345,
        hostname="some-other-host",
        created_at=datetime.now(tz=UTC),
    )

    with pytest.raises(CleanupLockedError) as exc_info:
        with cleanup_lock(tmp_path, "WU-1", wait_seconds=0.05, poll_seconds=0.01):
            pass

    assert "some-other-host" in exc_info.value.message


@pytest.mark.unit
def test_zombie_holder_on_this_host_is_broken(tmp_path: Path):
    path = cleanup_lock_path(tmp_path, "WU-1")
    _write_lock(path, pid=999_999, hostname=socket.gethostname(), created_at=datetime.now(tz=UTC))

    with patch("laneflow.core.integration.cleanup_lock.os.kill", side_effect=ProcessLookupError):
        with cleanup_lock(tmp_path, "WU-1", wait_seconds=0.5, poll_seconds=0.01) as info:
            assert read_lock_info(path).lock_id == info.lock_id  # type: ignore[union-attr]

    assert not path.exists()


@pytest.mark.unit
def test_stale_holder_is_broken(tmp_path: Path):
    _write_lock(
        cleanup_lock_path(tmp_path, "WU-1"),
        pid=1,
        hostname="some-other-host",
        created_at=datetime.now(tz=UTC) - timedelta(hours=1),
    )

    with cleanup_lock(tmp_path, "WU-1", wait_seconds=0.5, poll_seconds=0.01):
        pass


@pytest.mark.unit
def test_is_lock_stale_uses_five_minute_window():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    fresh = CleanupLockInfo(wu_id="WU-1", lock_id="a", created_at=now - timedelta(minutes=4), pid=1, hostname="h")
    old = CleanupLockInfo(wu_id="WU-1", lock_id="a", created_at=now - timedelta(minutes=6), pid=1, hostname="h")

    assert not is_lock_stale(fresh, now)
    assert is_lock_stale(old, now)


@pytest.mark.unit
def test_lock_taken_over_by_someone_else_is_left_alone(tmp_path: Path):
    path = cleanup_lock_path(tmp_path, "WU-1")

    with cleanup_lock(tmp_path, "WU-1"):
        _write_lock(path, pid=1, hostname="intruder", created_at=datetime.now(tz=UTC))

    assert read_lock_info(path).hostname == "intruder"  # type: ignore[union-attr]


@pytest.mark.unit
def test_lock_replaced_after_stale_check_is_not_broken(tmp_path: Path):
    path = cleanup_lock_path(tmp_path, "WU-1")
    _write_lock(path, pid=1, hostname="some-other-host", created_at=datetime.now(tz=UTC) - timedelta(hours=1))

    def replaced_by_new_holder(_info, now=None):
        # A new holder takes the lock between the staleness read and the break.
        path.unlink()
        _write_lock(path, pid=2, hostname="new-holder", created_at=datetime.now(tz=UTC), lock_id="fresh")
        return True

    with patch("laneflow.core.integration.cleanup_lock.is_lock_stale", side_effect=replaced_by_new_holder):
        _break_if_abandoned(path)

    assert read_lock_info(path).lock_id == "fresh"  # type: ignore[union-attr]
    assert sorted(p.name for p in tmp_path.iterdir()) == [path.name]


@pytest.mark.unit
def test_stale_lock_is_removed_without_leftovers(tmp_path: Path):
    path = cleanup_lock_path(tmp_path, "WU-1")
    _write_lock(path, pid=1, hostname="some-other-host", created_at=datetime.now(tz=UTC) - timedelta(hours=1))

    _break_if_abandoned(path)

    assert list(tmp_path.iterdir()) == []
