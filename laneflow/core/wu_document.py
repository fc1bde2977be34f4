"""WU record documents: one YAML file per WU, tagged by `status`.

Each status variant carries only the fields meaningful in that state; the
YAML is validated at load time so business logic never probes for optional
keys.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from laneflow.constants import WU_ID_PATTERN
from laneflow.core.errors import InvalidWuRecordError, WrongWuStatusError
from laneflow.core.models import ClaimedMode
from laneflow.utils import atomic_write_text, format_timestamp, resolve_now

_CLAIM_KEYS = frozenset(
    {"claimed_mode", "baseline_main_sha", "worktree_path", "claimed_at", "session_id", "blocked_reason", "completed_at"}
)


class _WuBase(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: str
    lane: str
    title: str
    code_paths: list[str] = []
    dependencies: list[str] = []
    blocked_by: list[str] = []

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not WU_ID_PATTERN.match(v):
            raise ValueError(f"Invalid WU id: {v!r} (expected WU-<number>)")
        return v


class ReadyWu(_WuBase):
    status: Literal["ready"] = "ready"


class _ClaimedFields(BaseModel):
    claimed_mode: ClaimedMode = "worktree"
    baseline_main_sha: Optional[str] = None
    worktree_path: Optional[str] = None
    claimed_at: Optional[str] = None
    session_id: Optional[str] = None


class InProgressWu(_WuBase, _ClaimedFields):
    status: Literal["in_progress"] = "in_progress"


class BlockedWu(_WuBase, _ClaimedFields):
    status: Literal["blocked"] = "blocked"
    blocked_reason: str

    @field_validator("blocked_reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("blocked_reason must not be empty")
        return v


class DoneWu(_WuBase):
    status: Literal["done"] = "done"
    claimed_mode: Optional[ClaimedMode] = None
    completed_at: str


WuDocument = Annotated[Union[ReadyWu, InProgressWu, BlockedWu, DoneWu], Field(discriminator="status")]

_ADAPTER: TypeAdapter[WuDocument] = TypeAdapter(WuDocument)


def wu_document_path(wu_dir: Path, wu_id: str) -> Path:
    return wu_dir / f"{wu_id}.yaml"


def parse_wu_document(raw: object, *, source: str = "<memory>") -> WuDocument:
    try:
        return _ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise InvalidWuRecordError(f"Invalid WU record {source}: {exc}") from exc


def load_wu_document(path: Path) -> WuDocument:
    """Load and validate one WU document."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidWuRecordError(f"Invalid YAML in {path}: {exc}") from exc
    return parse_wu_document(raw, source=str(path))


def dump_wu_document(doc: WuDocument) -> str:
    payload = doc.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)


def save_wu_document(path: Path, doc: WuDocument) -> None:
    atomic_write_text(path, dump_wu_document(doc))


def _carry(doc: WuDocument, *, drop_claim: bool) -> dict[str, object]:
    data = doc.model_dump()
    data.pop("status", None)
    if drop_claim:
        for key in _CLAIM_KEYS:
            data.pop(key, None)
    return data


def _require(doc: WuDocument, expected: str, action: str) -> None:
    if doc.status != expected:
        raise WrongWuStatusError(f"Cannot {action} {doc.id}: expected status {expected}, got {doc.status}")


def claim_document(
    doc: WuDocument,
    *,
    mode: ClaimedMode,
    baseline_main_sha: str | None,
    worktree_path: str | None,
    session_id: str | None = None,
    now: datetime | None = None,
) -> InProgressWu:
    _require(doc, "ready", "claim")
    return InProgressWu(
        **_carry(doc, drop_claim=True),
        claimed_mode=mode,
        baseline_main_sha=baseline_main_sha,
        worktree_path=worktree_path,
        claimed_at=format_timestamp(resolve_now(now)),
        session_id=session_id,
    )


def block_document(doc: WuDocument, reason: str) -> BlockedWu:
    _require(doc, "in_progress", "block")
    return BlockedWu(**_carry(doc, drop_claim=False), blocked_reason=reason)


def unblock_document(doc: WuDocument) -> InProgressWu:
    _require(doc, "blocked", "unblock")
    data = _carry(doc, drop_claim=False)
    data.pop("blocked_reason", None)
    return InProgressWu(**data)


def complete_document(doc: WuDocument, now: datetime | None = None) -> DoneWu:
    _require(doc, "in_progress", "complete")
    mode = doc.claimed_mode if isinstance(doc, InProgressWu) else None
    return DoneWu(
        **_carry(doc, drop_claim=True),
        claimed_mode=mode,
        completed_at=format_timestamp(resolve_now(now)),
    )


def reset_document(doc: WuDocument) -> ReadyWu:
    """Return the document to `ready`, clearing all claim metadata."""
    return ReadyWu(**_carry(doc, drop_claim=True))
