"""Generated status and backlog boards (markdown)."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from laneflow.config.schema import DirectoriesConfig
from laneflow.core.models import WuRecord
from laneflow.utils import atomic_write_text


def _lines(records: Iterable[WuRecord]) -> list[str]:
    return [f"- {record.id}: {record.title} ({record.lane})" for record in records] or ["- none"]


def _section(title: str, records: list[WuRecord], status: str) -> list[str]:
    return [f"## {title}", "", *_lines(r for r in records if r.status == status), ""]


def render_status(records: list[WuRecord]) -> str:
    body = ["# WU Status", ""]
    body += _section("In Progress", records, "in_progress")
    body += _section("Blocked", records, "blocked")
    return "\n".join(body)


def render_backlog(records: list[WuRecord]) -> str:
    body = ["# Backlog", ""]
    body += _section("Ready", records, "ready")
    body += _section("In Progress", records, "in_progress")
    body += _section("Blocked", records, "blocked")
    body += _section("Done", records, "done")
    return "\n".join(body)


def write_boards(root: Path, dirs: DirectoriesConfig, records: list[WuRecord]) -> list[str]:
    """Regenerate both boards under `root`; return their repo-relative paths."""
    ordered = sorted(records, key=lambda record: int(record.id.split("-", 1)[1]))
    atomic_write_text(root / dirs.status_path, render_status(ordered))
    atomic_write_text(root / dirs.backlog_path, render_backlog(ordered))
    return [dirs.status_path, dirs.backlog_path]
