"""Unit tests for `.laneflow.yaml` loading."""

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from laneflow.config import LaneflowConfig, load_config, load_project_config


@pytest.mark.unit
def test_missing_file_gives_defaults(tmp_path: Path):
    config = load_project_config(tmp_path)

    assert config == LaneflowConfig()
    assert config.git.trunk == "main"
    assert config.git.push_retry.retries == 3
    assert config.directories.stamps_dir == ".laneflow/stamps"


@pytest.mark.unit
def test_lanes_and_gates_parsed(tmp_path: Path):
    (tmp_path / ".laneflow.yaml").write_text(
        "lanes:\n"
        "  - name: Core\n"
        "    wip_limit: 2\n"
        "    lock_policy: active\n"
        "gates:\n"
        "  commands:\n"
        "    test: pytest -q\n"
        "git:\n"
        "  require_remote: false\n",
        encoding="utf-8",
    )

    config = load_project_config(tmp_path)

    lane = config.lane(" core ")
    assert lane is not None
    assert lane.wip_limit == 2
    assert lane.lock_policy == "active"
    assert config.lane("UI") is None
    assert config.gates.commands == {"test": "pytest -q"}
    assert config.git.require_remote is False


@pytest.mark.unit
def test_env_vars_expanded_from_dotenv(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("LANEFLOW_TEST_REGISTRY", raising=False)
    (tmp_path / ".env").write_text("LANEFLOW_TEST_REGISTRY=https://registry.internal/p.json\n", encoding="utf-8")
    (tmp_path / ".laneflow.yaml").write_text(
        "agent_patterns:\n  registry_url: ${LANEFLOW_TEST_REGISTRY}\n", encoding="utf-8"
    )

    config = load_project_config(tmp_path)

    assert config.agent_patterns.registry_url == "https://registry.internal/p.json"
    monkeypatch.delenv("LANEFLOW_TEST_REGISTRY", raising=False)


@pytest.mark.unit
def test_unknown_keys_are_warned(tmp_path: Path):
    path = tmp_path / ".laneflow.yaml"
    path.write_text("git:\n  remote: upstream\n  colour: blue\n", encoding="utf-8")

    with patch("laneflow.config.loader.logger") as mock_logger:
        config = load_config(path, LaneflowConfig)

    assert config.git.remote == "upstream"
    mock_logger.warning.assert_called_once()
    assert mock_logger.warning.call_args.args[1] == "root.git"


@pytest.mark.unit
def test_invalid_values_raise(tmp_path: Path):
    path = tmp_path / ".laneflow.yaml"
    path.write_text("lanes:\n  - name: Core\n    wip_limit: 0\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(path, LaneflowConfig)


@pytest.mark.unit
def test_unreadable_yaml_falls_back_to_defaults(tmp_path: Path):
    path = tmp_path / ".laneflow.yaml"
    path.write_text("lanes: [\n", encoding="utf-8")

    assert load_config(path, LaneflowConfig) == LaneflowConfig()
