"""Immutable context snapshots consumed by the legality state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

LocationType = Literal["main", "worktree", "unknown"]
WuStatus = Literal["ready", "in_progress", "blocked", "done"]
ClaimedMode = Literal["worktree", "branch-only", "worktree-pr", "branch-pr"]

CLAIMED_MODES: tuple[ClaimedMode, ...] = ("worktree", "branch-only", "worktree-pr", "branch-pr")
PR_MODES: frozenset[str] = frozenset({"worktree-pr", "branch-pr"})
WORKTREE_MODES: frozenset[str] = frozenset({"worktree", "worktree-pr"})


@dataclass(frozen=True)
class LocationContext:
    """Where the calling process currently stands."""

    type: LocationType
    cwd: str
    repo_root: str | None
    main_checkout: str | None
    worktree_name: str | None = None
    worktree_wu_id: str | None = None


@dataclass(frozen=True)
class RepoState:
    """Git state of one checkout.

    A populated `read_error` means the state could not be read; callers treat
    that as conservatively not clean.
    """

    branch: str | None
    is_detached: bool = False
    is_dirty: bool = False
    has_staged: bool = False
    ahead: int = 0
    behind: int = 0
    tracking: str | None = None
    modified_files: tuple[str, ...] = ()
    read_error: str | None = None

    @classmethod
    def unreadable(cls, error: str) -> RepoState:
        return cls(branch=None, read_error=error)

    @property
    def is_clean(self) -> bool:
        return self.read_error is None and not self.is_dirty


@dataclass(frozen=True)
class WuRecord:
    """Merged view of one WU: store status plus document fields."""

    id: str
    status: WuStatus
    lane: str
    title: str
    record_path: str
    is_consistent: bool = True
    inconsistency_reason: str | None = None
    claimed_mode: ClaimedMode | None = None
    baseline_main_sha: str | None = None
    worktree_path: str | None = None
    code_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class SessionState:
    is_active: bool = False
    session_id: str | None = None


@dataclass(frozen=True)
class Context:
    """Composite snapshot for one command invocation.

    `worktree_git` describes the WU's own worktree when the caller runs from
    the main checkout; it is never the same object as `git`.
    """

    location: LocationContext
    git: RepoState
    wu: WuRecord | None = None
    session: SessionState = field(default_factory=SessionState)
    worktree_git: RepoState | None = None
