"""Pytest configuration for Laneflow tests."""

import os

import pytest
import structlog

from laneflow.logging_config import LOG_LEVEL_ENV, setup_logging

setup_logging("WARNING")


@pytest.fixture(autouse=True)
def _restore_logging_config():
    """Undo logging reconfiguration done by CLI tests (which bind the per-test captured stderr)."""
    config = structlog.get_config()
    level = os.environ.get(LOG_LEVEL_ENV)
    yield
    structlog.configure(**config)
    if level is None:
        os.environ.pop(LOG_LEVEL_ENV, None)
    else:
        os.environ[LOG_LEVEL_ENV] = level


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=30s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(30))
