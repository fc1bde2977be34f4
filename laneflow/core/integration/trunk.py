"""Trunk guards: freshness, parallel completions, merged checks and branch deletion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from git.exc import GitCommandError

from laneflow.core.errors import TrunkOutOfSyncError
from laneflow.core.git_ops import GitOps
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

_COMPLETION_MARKER = re.compile(r"wu\((wu-\d+)\):", re.IGNORECASE)


def completion_commit_message(wu_id: str, title: str) -> str:
    """Commit subject marking a WU completion on trunk."""
    return f"wu({wu_id.lower()}): done - {title}"


@dataclass(frozen=True)
class ParallelCompletionResult:
    has_parallel: bool
    completed_wus: tuple[str, ...] = ()
    warning: str | None = None
    baseline_sha: str | None = None
    current_sha: str | None = None


def ensure_main_up_to_date(git: GitOps, *, remote: str, trunk: str, local_only: bool = False) -> None:
    """Abort when local trunk differs from the remote; connectivity failures only warn.

    Raises:
        TrunkOutOfSyncError: local and remote trunk point at different commits.
    """
    if local_only:
        return

    remote_ref = f"{remote}/{trunk}"
    try:
        git.fetch(remote, trunk)
        local_sha = git.rev_parse(trunk)
        remote_sha = git.rev_parse(remote_ref)
        if local_sha == remote_sha:
            return
        behind = git.rev_list_count(f"{trunk}..{remote_ref}")
        ahead = git.rev_list_count(f"{remote_ref}..{trunk}")
    except GitCommandError as exc:
        logger.warning("Could not verify %s is up to date with %s, continuing: %s", trunk, remote_ref, exc)
        return

    raise TrunkOutOfSyncError(
        f"Local {trunk} is out of sync with {remote_ref} ({behind} behind, {ahead} ahead)",
        ahead=ahead,
        behind=behind,
        fix_command=f"git pull {remote} {trunk}",
    )


def detect_parallel_completions(
    git: GitOps,
    *,
    wu_id: str,
    baseline_sha: str | None,
    remote: str,
    trunk: str,
    local_only: bool = False,
) -> ParallelCompletionResult:
    """Report other WUs completed on trunk since `baseline_sha`. Never blocks."""
    if not baseline_sha:
        logger.info("No baseline trunk SHA recorded for %s; skipping parallel completion check", wu_id)
        return ParallelCompletionResult(has_parallel=False)

    target = trunk if local_only else f"{remote}/{trunk}"
    try:
        if not local_only:
            git.fetch(remote, trunk)
        current_sha = git.rev_parse(target)
        if current_sha == baseline_sha:
            return ParallelCompletionResult(has_parallel=False, baseline_sha=baseline_sha, current_sha=current_sha)
        lines = git.log_oneline(f"{baseline_sha}..{target}", grep="^wu(wu-")
    except GitCommandError as exc:
        logger.warning("Parallel completion check failed for %s, continuing: %s", wu_id, exc)
        return ParallelCompletionResult(has_parallel=False, baseline_sha=baseline_sha)

    own_id = wu_id.upper()
    completed: list[str] = []
    for line in lines:
        if "done" not in line.lower():
            continue
        for match in _COMPLETION_MARKER.finditer(line):
            other = match.group(1).upper()
            if other != own_id and other not in completed:
                completed.append(other)

    if not completed:
        return ParallelCompletionResult(has_parallel=False, baseline_sha=baseline_sha, current_sha=current_sha)

    warning = (
        f"Parallel completions detected since {wu_id} was claimed: {', '.join(completed)}\n"
        f"Baseline: {baseline_sha[:8]}  Current: {current_sha[:8]}\n"
        f"Rebase may hit conflicts. Options:\n"
        f"  git fetch {remote} {trunk} && git rebase {target}"
    )
    logger.warning("%s", warning)
    return ParallelCompletionResult(
        has_parallel=True,
        completed_wus=tuple(completed),
        warning=warning,
        baseline_sha=baseline_sha,
        current_sha=current_sha,
    )


def is_branch_already_merged(git: GitOps, branch: str, trunk: str) -> bool:
    """True when the tip of `branch` is already contained in `trunk`."""
    try:
        tip = git.rev_parse(branch)
        return git.merge_base(trunk, branch) == tip
    except GitCommandError as exc:
        logger.warning("Could not check whether %s is merged into %s: %s", branch, trunk, exc)
        return False


def patches_already_upstream(git: GitOps, branch: str, trunk: str) -> bool:
    """True when every commit on `branch` has an equivalent patch in `trunk` (rebased merges)."""
    try:
        lines = git.cherry(trunk, branch)
    except GitCommandError as exc:
        logger.warning("Could not compare patches of %s against %s: %s", branch, trunk, exc)
        return False
    return all(line.startswith("-") for line in lines)


def delete_branch_with_merge_check(git: GitOps, branch: str, merged_into: Sequence[str]) -> bool:
    """Delete a local branch, forcing only when its content is confirmed merged.

    Returns False (with a warning) when git refuses and the merge check fails.
    """
    try:
        git.delete_branch(branch)
        return True
    except GitCommandError as exc:
        if "not fully merged" not in str(exc):
            raise
        logger.info("Branch %s reported not fully merged; checking %s", branch, ", ".join(merged_into))

    # "not fully merged" can mean the remote already has the commits while local
    # ref metadata lags, or that work is genuinely unmerged.
    if not any(
        is_branch_already_merged(git, branch, target) or patches_already_upstream(git, branch, target)
        for target in merged_into
    ):
        logger.warning("Keeping branch %s: content is not merged into %s", branch, ", ".join(merged_into))
        return False
    git.delete_branch(branch, force=True)
    return True
