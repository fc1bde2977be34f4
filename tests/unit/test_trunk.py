"""Unit tests for trunk guards."""

from unittest.mock import MagicMock

import pytest
from git.exc import GitCommandError

from laneflow.core.errors import TrunkOutOfSyncError
from laneflow.core.integration.trunk import (
    completion_commit_message,
    delete_branch_with_merge_check,
    detect_parallel_completions,
    ensure_main_up_to_date,
)


def _git(**shas: str) -> MagicMock:
    git = MagicMock()
    git.rev_parse.side_effect = lambda ref: shas[ref]
    return git


@pytest.mark.unit
def test_completion_message_format():
    assert completion_commit_message("WU-7", "Add lanes") == "wu(wu-7): done - Add lanes"


@pytest.mark.unit
def test_trunk_in_sync_passes():
    git = _git(**{"main": "abc", "origin/main": "abc"})

    ensure_main_up_to_date(git, remote="origin", trunk="main")

    git.fetch.assert_called_once_with("origin", "main")
    git.rev_list_count.assert_not_called()


@pytest.mark.unit
def test_trunk_out_of_sync_raises_with_counts():
    git = _git(**{"main": "abc", "origin/main": "def"})
    git.rev_list_count.side_effect = lambda rng: {"main..origin/main": 2, "origin/main..main": 1}[rng]

    with pytest.raises(TrunkOutOfSyncError) as exc_info:
        ensure_main_up_to_date(git, remote="origin", trunk="main")

    assert exc_info.value.behind == 2
    assert exc_info.value.ahead == 1
    assert exc_info.value.fix_command == "git pull origin main"


@pytest.mark.unit
def test_fetch_failure_fails_open():
    git = MagicMock()
    git.fetch.side_effect = GitCommandError("fetch", 128, b"could not resolve host")

    ensure_main_up_to_date(git, remote="origin", trunk="main")

    git.rev_parse.assert_not_called()


@pytest.mark.unit
def test_local_only_skips_freshness_check():
    git = MagicMock()

    ensure_main_up_to_date(git, remote="origin", trunk="main", local_only=True)

    git.fetch.assert_not_called()


@pytest.mark.unit
def test_parallel_completions_reported_without_own_id():
    git = _git(**{"origin/main": "f" * 40})
    git.log_oneline.return_value = [
        "1111111 wu(wu-200): done - Parallel work",
        "2222222 wu(wu-100): done - Own work",
        "3333333 wu(wu-300): claim for core lane",
    ]

    result = detect_parallel_completions(
        git, wu_id="WU-100", baseline_sha="a" * 40, remote="origin", trunk="main"
    )

    assert result.has_parallel
    assert result.completed_wus == ("WU-200",)
    assert "WU-200" in (result.warning or "")
    git.log_oneline.assert_called_once_with(f"{'a' * 40}..origin/main", grep="^wu(wu-")


@pytest.mark.unit
def test_parallel_check_noops_without_baseline_or_movement():
    git = _git(**{"main": "a" * 40})

    assert not detect_parallel_completions(
        git, wu_id="WU-1", baseline_sha=None, remote="origin", trunk="main"
    ).has_parallel
    unchanged = detect_parallel_completions(
        git, wu_id="WU-1", baseline_sha="a" * 40, remote="origin", trunk="main", local_only=True
    )

    assert not unchanged.has_parallel
    git.fetch.assert_not_called()
    git.log_oneline.assert_not_called()


@pytest.mark.unit
def test_parallel_check_never_raises():
    git = MagicMock()
    git.fetch.side_effect = GitCommandError("fetch", 1)

    result = detect_parallel_completions(git, wu_id="WU-1", baseline_sha="abc", remote="origin", trunk="main")

    assert not result.has_parallel


@pytest.mark.unit
def test_branch_deleted_normally():
    git = MagicMock()

    assert delete_branch_with_merge_check(git, "lane/core/wu-1", ["main"])

    git.delete_branch.assert_called_once_with("lane/core/wu-1")


@pytest.mark.unit
def test_force_delete_when_patches_are_upstream():
    git = MagicMock()
    git.delete_branch.side_effect = [GitCommandError("branch", 1, b"error: branch is not fully merged"), None]
    git.rev_parse.return_value = "tip"
    git.merge_base.return_value = "older"
    git.cherry.return_value = ["- 1111111", "- 2222222"]

    assert delete_branch_with_merge_check(git, "lane/core/wu-1", ["main"])

    assert git.delete_branch.call_args_list[-1].kwargs == {"force": True}


@pytest.mark.unit
def test_unmerged_branch_is_kept():
    git = MagicMock()
    git.delete_branch.side_effect = GitCommandError("branch", 1, b"error: branch is not fully merged")
    git.rev_parse.return_value = "tip"
    git.merge_base.return_value = "older"
    git.cherry.return_value = ["+ 1111111"]

    assert not delete_branch_with_merge_check(git, "lane/core/wu-1", ["main", "origin/main"])

    assert git.delete_branch.call_count == 1


@pytest.mark.unit
def test_other_delete_errors_propagate():
    git = MagicMock()
    git.delete_branch.side_effect = GitCommandError("branch", 1, b"error: branch not found")

    with pytest.raises(GitCommandError):
        delete_branch_with_merge_check(git, "lane/core/wu-1", ["main"])
