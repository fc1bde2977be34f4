"""Context resolver: snapshot location, git state, WU record and session.

Resolution is read-only. Each component is read through an injected reader so
tests can substitute fakes; the async variant issues independent reads
concurrently.
"""

from __future__ import annotations

import asyncio
from functools import partial
from pathlib import Path
from typing import Callable

from git import Repo
from git.exc import InvalidGitRepositoryError, NoSuchPathError

from laneflow.config.schema import LaneflowConfig
from laneflow.constants import worktree_dir_name, wu_id_from_worktree_name
from laneflow.core.errors import InvalidWuRecordError
from laneflow.core.git_ops import read_repo_state
from laneflow.core.models import WORKTREE_MODES, Context, LocationContext, RepoState, SessionState, WuRecord
from laneflow.core.session import FileSessionReader, inactive_session
from laneflow.core.state_store import WuStateStore
from laneflow.core.wu_state import WuStateReader
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

LocationReader = Callable[[str], LocationContext]
GitStateReader = Callable[[str], RepoState]
WuReader = Callable[[str], WuRecord | None]
SessionReader = Callable[[str | None], SessionState]


def resolve_location(cwd: str) -> LocationContext:
    """Classify `cwd` as the main checkout, a linked worktree, or unknown."""
    try:
        repo = Repo(cwd, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return LocationContext(type="unknown", cwd=cwd, repo_root=None, main_checkout=None)

    if repo.working_tree_dir is None:
        return LocationContext(type="unknown", cwd=cwd, repo_root=None, main_checkout=None)

    repo_root = Path(repo.working_tree_dir).resolve()
    git_dir = Path(repo.git_dir).resolve()
    common_dir = Path(repo.common_dir).resolve()
    if git_dir == common_dir:
        return LocationContext(type="main", cwd=cwd, repo_root=str(repo_root), main_checkout=str(repo_root))

    worktree_name = repo_root.name
    return LocationContext(
        type="worktree",
        cwd=cwd,
        repo_root=str(repo_root),
        main_checkout=str(common_dir.parent),
        worktree_name=worktree_name,
        worktree_wu_id=wu_id_from_worktree_name(worktree_name),
    )


def expected_worktree_path(main_checkout: str, worktrees_dir: str, wu: WuRecord) -> Path:
    if wu.worktree_path:
        candidate = Path(wu.worktree_path)
        return candidate if candidate.is_absolute() else Path(main_checkout) / candidate
    return Path(main_checkout) / worktrees_dir / worktree_dir_name(wu.lane, wu.id)


class ContextResolver:
    """Builds `Context` snapshots for command validation."""

    def __init__(
        self,
        *,
        wu_reader: WuReader,
        worktrees_dir: str = "worktrees",
        location_reader: LocationReader = resolve_location,
        git_reader: GitStateReader = read_repo_state,
        session_reader: SessionReader | None = None,
    ) -> None:
        self._wu_reader = wu_reader
        self._worktrees_dir = worktrees_dir
        self._location_reader = location_reader
        self._git_reader = git_reader
        self._session_reader = session_reader or inactive_session

    @classmethod
    def from_config(cls, repo_root: Path, config: LaneflowConfig) -> ContextResolver:
        dirs = config.directories
        reader = WuStateReader(
            wu_dir=repo_root / dirs.wu_dir,
            store=WuStateStore(state_dir=repo_root / dirs.state_dir),
            stamps_dir=repo_root / dirs.stamps_dir,
        )
        return cls(
            wu_reader=reader.read,
            worktrees_dir=dirs.worktrees_dir,
            git_reader=partial(read_repo_state, trunk=config.git.trunk),
            session_reader=FileSessionReader(repo_root / dirs.session_path),
        )

    def resolve(self, cwd: str, wu_id: str | None = None) -> Context:
        location = self._location_reader(cwd)
        git_state = self._git_reader(cwd)
        resolved_id = wu_id or location.worktree_wu_id
        wu = self._read_wu(resolved_id)
        return Context(
            location=location,
            git=git_state,
            wu=wu,
            session=self._session_reader(resolved_id),
            worktree_git=self._read_worktree_git(location, wu),
        )

    async def resolve_async(self, cwd: str, wu_id: str | None = None) -> Context:
        """Resolve with independent reads issued concurrently."""
        if wu_id is None:
            location = await asyncio.to_thread(self._location_reader, cwd)
            wu_id = location.worktree_wu_id
            git_state, wu, session = await asyncio.gather(
                asyncio.to_thread(self._git_reader, cwd),
                asyncio.to_thread(self._read_wu, wu_id),
                asyncio.to_thread(self._session_reader, wu_id),
            )
        else:
            location, git_state, wu, session = await asyncio.gather(
                asyncio.to_thread(self._location_reader, cwd),
                asyncio.to_thread(self._git_reader, cwd),
                asyncio.to_thread(self._read_wu, wu_id),
                asyncio.to_thread(self._session_reader, wu_id),
            )
        worktree_git = await asyncio.to_thread(self._read_worktree_git, location, wu)
        return Context(location=location, git=git_state, wu=wu, session=session, worktree_git=worktree_git)

    def _read_wu(self, wu_id: str | None) -> WuRecord | None:
        if wu_id is None:
            return None
        try:
            return self._wu_reader(wu_id)
        except InvalidWuRecordError as exc:
            logger.warning("Cannot read WU %s: %s", wu_id, exc)
            return None

    def _read_worktree_git(self, location: LocationContext, wu: WuRecord | None) -> RepoState | None:
        if location.type != "main" or wu is None or wu.status != "in_progress":
            return None
        if location.main_checkout is None:
            return None
        if wu.claimed_mode is not None and wu.claimed_mode not in WORKTREE_MODES:
            return None
        path = expected_worktree_path(location.main_checkout, self._worktrees_dir, wu)
        if not path.exists():
            logger.info("Worktree for %s not found at %s", wu.id, path)
            return None
        return self._git_reader(str(path))
