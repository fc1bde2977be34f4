"""Allowlist validation for files staged by a completion commit."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from laneflow.core.errors import StagedFileNotAllowedError
from laneflow.core.risk import DOCS_PATH_PATTERNS
from laneflow.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MetadataPaths:
    """Repo-relative metadata files a completion commit may touch."""

    wu_dir: str
    wu_record: str
    status: str
    backlog: str
    events: str
    stamps_dir: str


@dataclass(frozen=True)
class StagedFilesCheck:
    ok: bool
    warnings: tuple[str, ...] = ()


def _normalize(path: str) -> str:
    normalized = path.replace("\\", "/")
    return normalized[2:] if normalized.startswith("./") else normalized


def docs_path_patterns(stamps_dir: str) -> tuple[re.Pattern[str], ...]:
    patterns = DOCS_PATH_PATTERNS + (rf"^{re.escape(stamps_dir.rstrip('/'))}/",)
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


def is_docs_path(path: str, stamps_dir: str) -> bool:
    normalized = _normalize(path)
    return any(pattern.search(normalized) for pattern in docs_path_patterns(stamps_dir))


def validate_staged_files(
    staged: Sequence[str],
    paths: MetadataPaths,
    *,
    docs_only: bool = False,
    metadata_allowlist: Sequence[str] = (),
) -> StagedFilesCheck:
    """Check that a completion commit stages only metadata.

    Docs-only WUs accept documentation paths in place of the injected
    allowlist. Unexpected files that are all other WUs' records are a warning.

    Raises:
        StagedFileNotAllowedError: any other unexpected staged path.
    """
    metadata = {paths.wu_record, paths.status, paths.backlog, paths.events}
    stamps_prefix = paths.stamps_dir.rstrip("/") + "/"
    allowed = set(metadata) if docs_only else metadata | set(metadata_allowlist)

    unexpected: list[str] = []
    for raw in staged:
        path = _normalize(raw)
        if path in allowed or path.startswith(stamps_prefix):
            continue
        if docs_only and is_docs_path(path, paths.stamps_dir):
            continue
        unexpected.append(path)

    if not unexpected:
        return StagedFilesCheck(ok=True)

    other_wu_record = re.compile(rf"^{re.escape(paths.wu_dir.rstrip('/'))}/WU-\d+\.yaml$")
    if all(other_wu_record.match(path) for path in unexpected):
        warning = f"Other WU records staged alongside completion: {', '.join(unexpected)}"
        logger.warning("%s", warning)
        return StagedFilesCheck(ok=True, warnings=(warning,))

    raise StagedFileNotAllowedError(unexpected, fix_command=f"git restore --staged {' '.join(unexpected)}")
