"""Laneflow logging configuration.

Laneflow logs through structlog. Library modules only call `get_logger`;
the CLI boundary calls `setup_logging` once per process. The level comes
from the argument or `LANEFLOW_LOG_LEVEL` (default: INFO).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Optional

import structlog

LOG_LEVEL_ENV = "LANEFLOW_LOG_LEVEL"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        return logging.INFO
    return resolved


def setup_logging(level: Optional[str] = None) -> None:
    """Configure Laneflow logging.

    Args:
        level: Optional override for `LANEFLOW_LOG_LEVEL`.
    """
    if level:
        os.environ[LOG_LEVEL_ENV] = level

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to a module name."""
    return structlog.get_logger(name)
