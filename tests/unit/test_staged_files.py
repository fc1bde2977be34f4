"""Unit tests for the completion-commit staged-file allowlist."""

import pytest

from laneflow.core.errors import StagedFileNotAllowedError
from laneflow.core.integration.staged_files import MetadataPaths, is_docs_path, validate_staged_files

PATHS = MetadataPaths(
    wu_dir="docs/tasks/wu",
    wu_record="docs/tasks/wu/WU-5.yaml",
    status="docs/tasks/status.md",
    backlog="docs/tasks/backlog.md",
    events=".laneflow/state/wu-events.jsonl",
    stamps_dir=".laneflow/stamps",
)


@pytest.mark.unit
def test_metadata_and_stamp_paths_pass():
    result = validate_staged_files(
        [
            "docs/tasks/wu/WU-5.yaml",
            "docs/tasks/status.md",
            "docs/tasks/backlog.md",
            ".laneflow/state/wu-events.jsonl",
            ".laneflow/stamps/WU-5.done",
        ],
        PATHS,
    )

    assert result.ok
    assert result.warnings == ()


@pytest.mark.unit
def test_injected_allowlist_is_accepted():
    result = validate_staged_files(["CHANGELOG.txt"], PATHS, metadata_allowlist=["CHANGELOG.txt"])

    assert result.ok


@pytest.mark.unit
def test_every_unexpected_path_is_listed():
    with pytest.raises(StagedFileNotAllowedError) as exc_info:
        validate_staged_files(["src/app.py", "./docs/tasks/status.md", "package.json"], PATHS)

    assert exc_info.value.unexpected == ["src/app.py", "package.json"]
    assert exc_info.value.fix_command == "git restore --staged src/app.py package.json"


@pytest.mark.unit
def test_other_wu_records_only_warn():
    result = validate_staged_files(["docs/tasks/wu/WU-5.yaml", "docs/tasks/wu/WU-6.yaml"], PATHS)

    assert result.ok
    assert "WU-6.yaml" in result.warnings[0]


@pytest.mark.unit
def test_docs_only_uses_docs_patterns_instead_of_allowlist():
    docs = validate_staged_files(["docs/guide.md", "README.md"], PATHS, docs_only=True)

    assert docs.ok
    with pytest.raises(StagedFileNotAllowedError):
        validate_staged_files(["CHANGELOG.txt"], PATHS, docs_only=True, metadata_allowlist=["CHANGELOG.txt"])


@pytest.mark.unit
def test_windows_separators_are_normalized():
    assert validate_staged_files(["docs\\tasks\\wu\\WU-5.yaml"], PATHS).ok
    assert is_docs_path("docs\\intro.txt", PATHS.stamps_dir)
    assert is_docs_path(".laneflow/stamps/WU-1.done", PATHS.stamps_dir)
