"""Short-lived worktrees for metadata commits.

Metadata writes (create/claim records, events) happen in a throwaway
worktree on `tmp/<operation>/<wu-id>` so an agent's long-lived worktree and
the main checkout are never disturbed. Worktrees left behind by a killed
process are detected by branch name and removed before a new one is made.
"""

from __future__ import annotations

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from git.exc import GitCommandError

from laneflow.constants import temp_branch_name
from laneflow.core.git_ops import GitOps, find_worktree_by_branch
from laneflow.core.integration.force import NO_FORCE, ForceAuthorization
from laneflow.core.integration.retry import (
    DEFAULT_PUSH_RETRY_POLICY,
    ConflictResolver,
    RetryPolicy,
    push_refspec_with_retry,
)
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

# Receives the worktree path, returns repo-relative paths to commit.
MicroWorktreeExecutor = Callable[[Path], list[str]]
# Inspects the staged index before the commit; raises to abort.
StagedCheck = Callable[[GitOps], None]


@dataclass(frozen=True)
class MicroWorktreeCleanup:
    cleaned_worktree: bool
    cleaned_branch: bool


@dataclass(frozen=True)
class MicroWorktreeResult:
    operation: str
    wu_id: str
    committed_files: tuple[str, ...]
    push_attempts: int


def _remove_worktree(git: GitOps, path: str) -> bool:
    try:
        git.worktree_remove(path, force=True)
        return True
    except GitCommandError as exc:
        logger.warning("git worktree remove failed for %s, deleting directory: %s", path, exc)

    try:
        shutil.rmtree(path, ignore_errors=False)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not delete worktree directory %s: %s", path, exc)
        return False
    try:
        git.worktree_prune()
    except GitCommandError as exc:
        logger.warning("git worktree prune failed: %s", exc)
    return True


def _delete_branch(git: GitOps, branch: str) -> bool:
    try:
        if not git.branch_exists(branch):
            return False
        git.delete_branch(branch, force=True)
        return True
    except GitCommandError as exc:
        logger.warning("Could not delete temp branch %s: %s", branch, exc)
        return False


def cleanup_orphaned_micro_worktree(git: GitOps, operation: str, wu_id: str) -> MicroWorktreeCleanup:
    """Remove a temp worktree/branch left over from an earlier run of `operation` for `wu_id`."""
    branch = temp_branch_name(operation, wu_id)
    cleaned_worktree = False
    try:
        path = find_worktree_by_branch(git.worktree_porcelain(), branch)
    except GitCommandError as exc:
        logger.warning("Could not list worktrees while checking for orphan %s: %s", branch, exc)
        path = None

    if path is not None:
        logger.info("Removing orphaned micro-worktree %s (%s)", path, branch)
        cleaned_worktree = _remove_worktree(git, path)

    cleaned_branch = _delete_branch(git, branch)
    return MicroWorktreeCleanup(cleaned_worktree=cleaned_worktree, cleaned_branch=cleaned_branch)


def cleanup_micro_worktree(git: GitOps, path: str | Path, branch: str) -> MicroWorktreeCleanup:
    """Remove a micro-worktree and its branch. Missing pieces are not an error."""
    cleaned_worktree = False
    try:
        registered = find_worktree_by_branch(git.worktree_porcelain(), branch)
    except GitCommandError as exc:
        logger.warning("Could not list worktrees during cleanup of %s: %s", branch, exc)
        registered = None
    if registered is not None or Path(path).exists():
        cleaned_worktree = _remove_worktree(git, registered or str(path))
    cleaned_branch = _delete_branch(git, branch)
    return MicroWorktreeCleanup(cleaned_worktree=cleaned_worktree, cleaned_branch=cleaned_branch)


@contextmanager
def micro_worktree(git: GitOps, *, operation: str, wu_id: str, start_point: str) -> Iterator[tuple[Path, str]]:
    """Create `tmp/<operation>/<wu-id>` in a fresh temp directory; always clean up."""
    cleanup_orphaned_micro_worktree(git, operation, wu_id)
    branch = temp_branch_name(operation, wu_id)
    path = Path(tempfile.mkdtemp(prefix=f"laneflow-{operation}-"))
    try:
        git.worktree_add(path, branch, start_point=start_point)
    except GitCommandError:
        shutil.rmtree(path, ignore_errors=True)
        raise
    try:
        yield path, branch
    finally:
        cleanup_micro_worktree(git, path, branch)


def with_micro_worktree(
    git: GitOps,
    *,
    operation: str,
    wu_id: str,
    execute: MicroWorktreeExecutor,
    commit_message: str,
    remote: str,
    trunk: str,
    local_only: bool = False,
    push_only: bool = False,
    start_point: str | None = None,
    push_target: str | None = None,
    before_commit: StagedCheck | None = None,
    policy: RetryPolicy = DEFAULT_PUSH_RETRY_POLICY,
    force: ForceAuthorization = NO_FORCE,
    resolve_conflicts: ConflictResolver | None = None,
) -> MicroWorktreeResult:
    """Run `execute` in a micro-worktree, commit its files and publish them.

    By default the temp branch starts at trunk and is integrated into trunk:
    remote mode pushes it to `remote/trunk` with retry and then fast-forwards
    the local trunk (unless `push_only`); local-only mode fast-forwards the
    local trunk directly. With `push_target` set to another branch, the temp
    branch is pushed there instead and local trunk is left alone. When a retry
    rebase stops on conflicts, `resolve_conflicts` may settle them.
    """
    target = push_target or trunk
    integrates_trunk = target == trunk
    if local_only and not integrates_trunk:
        raise ValueError(f"Cannot publish {operation} to {target} without a remote")

    if not local_only:
        git.fetch(remote, trunk)
        if integrates_trunk and not push_only:
            _fast_forward_trunk(git, trunk, f"{remote}/{trunk}")
    if start_point is None:
        start_point = trunk if local_only else f"{remote}/{trunk}"

    with micro_worktree(git, operation=operation, wu_id=wu_id, start_point=start_point) as (path, branch):
        files = execute(path)
        if not files:
            logger.info("%s for %s produced no changes", operation, wu_id)
            return MicroWorktreeResult(operation=operation, wu_id=wu_id, committed_files=(), push_attempts=0)

        worktree_git = GitOps(path)
        worktree_git.add(files)
        if before_commit is not None:
            before_commit(worktree_git)
        worktree_git.commit(commit_message)

        attempts = 0
        if local_only:
            _fast_forward_trunk(git, trunk, branch)
        else:
            attempts = push_refspec_with_retry(
                worktree_git,
                remote=remote,
                local_ref=branch,
                remote_ref=target,
                operation_name=operation,
                policy=policy,
                force=force,
                resolve_conflicts=resolve_conflicts,
            )
            if integrates_trunk and not push_only:
                git.fetch(remote, trunk)
                _fast_forward_trunk(git, trunk, f"{remote}/{trunk}")

        return MicroWorktreeResult(
            operation=operation, wu_id=wu_id, committed_files=tuple(files), push_attempts=attempts
        )


def _fast_forward_trunk(git: GitOps, trunk: str, source: str) -> None:
    """Fast-forward local `trunk` to `source`, whether or not trunk is checked out."""
    if git.current_branch() == trunk:
        git.merge_ff_only(source)
    else:
        git.update_branch_ff(source, trunk)
