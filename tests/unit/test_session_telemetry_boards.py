"""Unit tests for the session file reader, gate telemetry sink and boards."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from laneflow.config.schema import DirectoriesConfig
from laneflow.core.boards import render_backlog, render_status, write_boards
from laneflow.core.models import WuRecord
from laneflow.core.session import FileSessionReader
from laneflow.core.telemetry import JsonlTelemetrySink


def _record(wu_id: str, status: str, title: str = "Work") -> WuRecord:
    return WuRecord(id=wu_id, status=status, lane="Core", title=title, record_path=f"{wu_id}.yaml")  # type: ignore[arg-type]


@pytest.mark.unit
def test_session_missing_or_broken_file_is_inactive(tmp_path: Path):
    path = tmp_path / "session.json"

    assert not FileSessionReader(path)("WU-1").is_active
    path.write_text("{not json", encoding="utf-8")
    assert not FileSessionReader(path)("WU-1").is_active


@pytest.mark.unit
def test_session_scoped_to_owning_wu(tmp_path: Path):
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"session_id": "abc", "wu_id": "WU-1", "active": True}), encoding="utf-8")
    reader = FileSessionReader(path)

    assert reader("WU-1").session_id == "abc"
    assert reader(None).is_active
    assert not reader("WU-2").is_active


@pytest.mark.unit
def test_telemetry_appends_jsonl(tmp_path: Path):
    path = tmp_path / "telemetry" / "gates.jsonl"
    sink = JsonlTelemetrySink(path)
    now = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)

    sink({"wu_id": "WU-1", "lane": "Core", "gate_name": "lint", "passed": True, "duration_ms": 12.5}, now)
    sink({"wu_id": "WU-1", "lane": "Core", "gate_name": "test", "passed": False, "duration_ms": 40.0}, now)

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["gate_name"] for line in lines] == ["lint", "test"]
    assert lines[0]["timestamp"] == "2026-03-01T09:30:00+00:00"
    assert lines[1]["passed"] is False


@pytest.mark.unit
def test_telemetry_write_failure_is_swallowed(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    sink = JsonlTelemetrySink(blocker / "gates.jsonl")

    sink({"wu_id": None, "lane": None, "gate_name": "lint", "passed": True, "duration_ms": 1.0})


@pytest.mark.unit
def test_boards_group_by_status():
    records = [_record("WU-1", "ready"), _record("WU-2", "in_progress", "Lanes"), _record("WU-3", "done")]

    status = render_status(records)
    backlog = render_backlog(records)

    assert "## In Progress\n\n- WU-2: Lanes (Core)" in status
    assert "## Blocked\n\n- none" in status
    assert "WU-1" not in status
    assert "## Ready\n\n- WU-1: Work (Core)" in backlog
    assert "## Done\n\n- WU-3: Work (Core)" in backlog


@pytest.mark.unit
def test_write_boards_orders_numerically(tmp_path: Path):
    dirs = DirectoriesConfig()

    written = write_boards(tmp_path, dirs, [_record("WU-10", "ready"), _record("WU-9", "ready")])

    assert written == [dirs.status_path, dirs.backlog_path]
    backlog = (tmp_path / dirs.backlog_path).read_text(encoding="utf-8")
    assert backlog.index("WU-9") < backlog.index("WU-10")
