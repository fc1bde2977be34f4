"""JSONL sink for gate outcome events."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from laneflow.core.gates import GateEvent
from laneflow.logging_config import get_logger
from laneflow.utils import format_timestamp, resolve_now

logger = get_logger(__name__)


class JsonlTelemetrySink:
    """Appends one JSON line per gate event. Write failures are logged, never raised."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def __call__(self, event: GateEvent, now: datetime | None = None) -> None:
        record = {"timestamp": format_timestamp(resolve_now(now)), **event}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            logger.warning("Could not write gate telemetry to %s: %s", self._path, exc)
