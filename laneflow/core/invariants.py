"""Structural invariants over WU records and stamps (the always-first gate)."""

from __future__ import annotations

import time
from pathlib import Path

from laneflow.core.errors import InvalidWuRecordError
from laneflow.core.gates import GateResult, GateRunner
from laneflow.core.stamps import has_stamp, list_stamped_ids
from laneflow.core.wu_document import load_wu_document
from laneflow.logging_config import get_logger

logger = get_logger(__name__)


def check_invariants(wu_dir: Path, stamps_dir: Path) -> list[str]:
    """Return every violated invariant as a human-readable line."""
    violations: list[str] = []
    seen: dict[str, Path] = {}
    known_ids: set[str] = set()

    paths = sorted(wu_dir.glob("WU-*.yaml")) if wu_dir.is_dir() else []
    for path in paths:
        try:
            doc = load_wu_document(path)
        except InvalidWuRecordError as exc:
            violations.append(str(exc))
            continue
        known_ids.add(doc.id)
        if path.stem != doc.id:
            violations.append(f"{path.name} declares id {doc.id}")
        if doc.id in seen:
            violations.append(f"Duplicate WU id {doc.id} in {seen[doc.id].name} and {path.name}")
        seen.setdefault(doc.id, path)
        if doc.status == "done" and not has_stamp(stamps_dir, doc.id):
            violations.append(f"{doc.id} is done but has no stamp")

    for stamped in list_stamped_ids(stamps_dir):
        if stamped not in known_ids:
            violations.append(f"Stamp {stamped} refers to no WU record")

    return violations


def invariants_gate(wu_dir: Path, stamps_dir: Path) -> GateRunner:
    def run() -> GateResult:
        start = time.monotonic()
        violations = check_invariants(wu_dir, stamps_dir)
        for violation in violations:
            logger.error("Invariant violated: %s", violation)
        return GateResult(ok=not violations, duration_ms=(time.monotonic() - start) * 1000, output="\n".join(violations))

    return run
