"""Thin GitPython wrapper used by the context resolver and lifecycle manager."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, cast

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from laneflow.constants import TRUNK_BRANCH
from laneflow.core.models import RepoState
from laneflow.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WorktreeEntry:
    path: str
    branch: str | None
    head: str | None = None


def parse_worktree_porcelain(output: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` into entries (blank line ends a record)."""
    entries: list[WorktreeEntry] = []
    path: str | None = None
    branch: str | None = None
    head: str | None = None
    for line in output.splitlines() + [""]:
        if line.startswith("worktree "):
            path = line[len("worktree ") :].strip()
        elif line.startswith("HEAD "):
            head = line[len("HEAD ") :].strip()
        elif line.startswith("branch "):
            ref = line[len("branch ") :].strip()
            branch = ref[len("refs/heads/") :] if ref.startswith("refs/heads/") else ref
        elif not line.strip():
            if path is not None:
                entries.append(WorktreeEntry(path=path, branch=branch, head=head))
            path = branch = head = None
    return entries


def find_worktree_by_branch(output: str, branch: str) -> str | None:
    for entry in parse_worktree_porcelain(output):
        if entry.branch == branch:
            return entry.path
    return None


def parse_porcelain_status(output: str) -> tuple[list[str], bool, bool]:
    """Return (paths, tracked_dirty, has_staged) from `git status --porcelain`."""
    paths: list[str] = []
    tracked_dirty = False
    has_staged = False
    for line in output.splitlines():
        if len(line) < 4:
            continue
        index_flag, tree_flag = line[0], line[1]
        path = line[3:].strip()
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if path:
            paths.append(path)
        if index_flag == "?" and tree_flag == "?":
            continue
        tracked_dirty = True
        if index_flag not in (" ", "?"):
            has_staged = True
    return paths, tracked_dirty, has_staged


class GitOps:
    """Git operations against one checkout (main or worktree)."""

    def __init__(self, path: str | Path, *, search_parent_directories: bool = False) -> None:
        self.repo = Repo(str(path), search_parent_directories=search_parent_directories)

    @property
    def working_dir(self) -> Path:
        return Path(cast(str, self.repo.working_tree_dir))

    def fetch(self, remote: str, ref: str) -> None:
        self.repo.git.fetch(remote, ref)

    def rev_parse(self, ref: str) -> str:
        return cast(str, self.repo.git.rev_parse(ref)).strip()

    def merge_base(self, left: str, right: str) -> str:
        return cast(str, self.repo.git.merge_base(left, right)).strip()

    def rev_list_count(self, revision_range: str) -> int:
        raw = cast(str, self.repo.git.rev_list("--count", revision_range)).strip()
        return int(raw) if raw.isdigit() else 0

    def current_branch(self) -> str | None:
        if self.repo.head.is_detached:
            return None
        return self.repo.active_branch.name

    def worktree_porcelain(self) -> str:
        return cast(str, self.repo.git.worktree("list", "--porcelain"))

    def worktree_add(self, path: Path, branch: str, *, start_point: str | None = None) -> None:
        """Add a worktree, creating `branch` from `start_point` when given."""
        if start_point is not None:
            self.repo.git.worktree("add", "-b", branch, str(path), start_point)
        else:
            self.repo.git.worktree("add", str(path), branch)

    def worktree_remove(self, path: str | Path, *, force: bool = False) -> None:
        args = ["remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        self.repo.git.worktree(*args)

    def worktree_prune(self) -> None:
        self.repo.git.worktree("prune")

    def branch_exists(self, branch: str) -> bool:
        return _branch_exists(self.repo, branch)

    def remote_branch_exists(self, remote: str, branch: str) -> bool:
        try:
            raw = cast(str, self.repo.git.ls_remote("--heads", remote, branch))
        except GitCommandError:
            return False
        return bool(raw.strip())

    def create_branch(self, branch: str, start_point: str) -> None:
        self.repo.git.branch(branch, start_point)

    def delete_branch(self, branch: str, *, force: bool = False) -> None:
        self.repo.git.branch("-D" if force else "-d", branch)

    def delete_remote_branch(self, remote: str, branch: str) -> None:
        self.repo.git.push(remote, "--delete", branch)

    def push(self, remote: str, refspec: str, *, env: Mapping[str, str] | None = None) -> None:
        if env:
            self.repo.git.push(remote, refspec, env=dict(env))
        else:
            self.repo.git.push(remote, refspec)

    def rebase(self, onto: str) -> None:
        self.repo.git.rebase(onto)

    def rebase_abort(self) -> None:
        self.repo.git.rebase("--abort")

    def rebase_continue(self) -> None:
        self.repo.git.rebase("--continue", env={"GIT_EDITOR": "true"})

    def rebase_in_progress(self) -> bool:
        for state_dir in ("rebase-merge", "rebase-apply"):
            raw = cast(str, self.repo.git.rev_parse("--git-path", state_dir)).strip()
            if (self.working_dir / raw).exists():
                return True
        return False

    def conflicted_paths(self) -> list[str]:
        raw = cast(str, self.repo.git.diff("--name-only", "--diff-filter=U"))
        return list(dict.fromkeys(line.strip() for line in raw.splitlines() if line.strip()))

    def show_stage(self, stage: int, path: str) -> str:
        """Content of `path` at merge `stage` (2 = checked-out side, 3 = side being applied)."""
        return cast(str, self.repo.git.show(f":{stage}:{path}", strip_newline_in_stdout=False))

    def merge_ff_only(self, ref: str) -> None:
        self.repo.git.merge("--ff-only", ref)

    def update_branch_ff(self, source: str, branch: str) -> None:
        """Fast-forward a branch that is not checked out here."""
        self.repo.git.fetch(".", f"{source}:{branch}")

    def cherry(self, upstream: str, head: str) -> list[str]:
        """`git cherry` lines: "-" marks a commit whose patch is already upstream."""
        raw = cast(str, self.repo.git.cherry(upstream, head))
        return [line.strip() for line in raw.splitlines() if line.strip()]

    def checkout(self, ref: str) -> None:
        self.repo.git.checkout(ref)

    def reset_hard(self, ref: str) -> None:
        self.repo.git.reset("--hard", ref)

    def log_oneline(self, revision_range: str, *, grep: str | None = None) -> list[str]:
        args = ["--oneline"]
        if grep:
            args.append(f"--grep={grep}")
        args.append(revision_range)
        raw = cast(str, self.repo.git.log(*args))
        return [line for line in raw.splitlines() if line.strip()]

    def staged_files(self) -> list[str]:
        raw = cast(str, self.repo.git.diff("--cached", "--name-only"))
        return [line.strip() for line in raw.splitlines() if line.strip()]

    def diff_names(self, revision_range: str) -> list[str]:
        raw = cast(str, self.repo.git.diff("--name-only", revision_range))
        return [line.strip() for line in raw.splitlines() if line.strip()]

    def add(self, paths: list[str]) -> None:
        self.repo.git.add("--", *paths)

    def commit(self, message: str) -> None:
        self.repo.git.commit("-m", message)

    def dirty_paths(self) -> list[str]:
        paths, _, _ = parse_porcelain_status(cast(str, self.repo.git.status("--porcelain")))
        return paths


def read_repo_state(path: str | Path, *, trunk: str = TRUNK_BRANCH) -> RepoState:
    """Read git state for `path`. Failures land in `read_error`, never raise.

    Ahead/behind are counted against the upstream branch, or against local
    `trunk` for a branch with no upstream (lane branches never have one).
    """
    try:
        repo = Repo(str(path), search_parent_directories=True)
        is_detached = repo.head.is_detached
        branch = None if is_detached else repo.active_branch.name
        paths, tracked_dirty, has_staged = parse_porcelain_status(cast(str, repo.git.status("--porcelain")))

        tracking: str | None = None
        base: str | None = None
        ahead = behind = 0
        if not is_detached:
            tracking_ref = repo.active_branch.tracking_branch()
            if tracking_ref is not None:
                tracking = base = tracking_ref.name
            elif branch != trunk and _branch_exists(repo, trunk):
                base = trunk
        if base is not None:
            ahead = int(cast(str, repo.git.rev_list("--count", f"{base}..HEAD")).strip() or 0)
            behind = int(cast(str, repo.git.rev_list("--count", f"HEAD..{base}")).strip() or 0)

        return RepoState(
            branch=branch,
            is_detached=is_detached,
            is_dirty=tracked_dirty,
            has_staged=has_staged,
            ahead=ahead,
            behind=behind,
            tracking=tracking,
            modified_files=tuple(paths),
        )
    except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError, ValueError, TypeError) as exc:
        logger.warning("Cannot read git state at %s: %s", path, exc)
        return RepoState.unreadable(str(exc) or exc.__class__.__name__)


def _branch_exists(repo: Repo, branch: str) -> bool:
    try:
        repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{branch}")
    except GitCommandError:
        return False
    return True
