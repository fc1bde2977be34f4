"""Merged WU view: event log status plus document descriptive fields."""

from __future__ import annotations

from pathlib import Path

from laneflow.core.errors import InvalidWuRecordError
from laneflow.core.models import WuRecord
from laneflow.core.stamps import has_stamp
from laneflow.core.state_store import WuStateStore, WuStoreEntry
from laneflow.core.wu_document import BlockedWu, DoneWu, InProgressWu, WuDocument, load_wu_document, wu_document_path
from laneflow.logging_config import get_logger

logger = get_logger(__name__)


class WuStateReader:
    """Reads WU records, reporting disagreement between the log and the document."""

    def __init__(self, *, wu_dir: Path, store: WuStateStore, stamps_dir: Path) -> None:
        self._wu_dir = wu_dir
        self._store = store
        self._stamps_dir = stamps_dir

    def read(self, wu_id: str) -> WuRecord | None:
        return self._merge(wu_id, self._store.get(wu_id))

    def read_all(self) -> list[WuRecord]:
        entries = self._store.replay()
        ids = set(entries)
        if self._wu_dir.is_dir():
            ids.update(p.stem for p in self._wu_dir.glob("WU-*.yaml"))
        records: list[WuRecord] = []
        for wu_id in sorted(ids):
            try:
                record = self._merge(wu_id, entries.get(wu_id))
            except InvalidWuRecordError as exc:
                logger.warning("Skipping unreadable WU record %s: %s", wu_id, exc)
                continue
            if record is not None:
                records.append(record)
        return records

    def _merge(self, wu_id: str, entry: WuStoreEntry | None) -> WuRecord | None:
        path = wu_document_path(self._wu_dir, wu_id)
        if not path.exists():
            if entry is None:
                return None
            return WuRecord(
                id=wu_id,
                status=entry.status,
                lane=entry.lane or "",
                title="",
                record_path=str(path),
                is_consistent=False,
                inconsistency_reason=f"State store tracks {wu_id} but {path.name} is missing",
            )

        doc = load_wu_document(path)
        status = entry.status if entry is not None else doc.status
        reason = self._inconsistency(wu_id, doc, entry)
        claimed = doc if isinstance(doc, (InProgressWu, BlockedWu)) else None
        return WuRecord(
            id=doc.id,
            status=status,
            lane=doc.lane,
            title=doc.title,
            record_path=str(path),
            is_consistent=reason is None,
            inconsistency_reason=reason,
            claimed_mode=claimed.claimed_mode if claimed else (doc.claimed_mode if isinstance(doc, DoneWu) else None),
            baseline_main_sha=claimed.baseline_main_sha if claimed else None,
            worktree_path=claimed.worktree_path if claimed else None,
            code_paths=tuple(doc.code_paths),
        )

    def _inconsistency(self, wu_id: str, doc: WuDocument, entry: WuStoreEntry | None) -> str | None:
        if doc.id != wu_id:
            return f"Record file for {wu_id} declares id {doc.id}"
        if entry is not None and entry.status != doc.status:
            return f"State store says {entry.status} but record says {doc.status}"
        status = entry.status if entry is not None else doc.status
        stamped = has_stamp(self._stamps_dir, wu_id)
        if status == "done" and not stamped:
            return f"{wu_id} is done but has no completion stamp"
        if status != "done" and stamped:
            return f"{wu_id} has a completion stamp but status is {status}"
        return None
