"""Settle rebase conflicts in the metadata every WU operation touches.

Each metadata commit appends to the event log and regenerates the boards,
so two agents publishing at the same time always collide on those files.
The event log is append-only: trunk's lines are kept in order and the
replayed commit's new lines go after them. Boards are derived, so trunk's
copy is taken and then rebuilt from the merged state. A conflict on any
other path is a real conflict and is left to the caller.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

from laneflow.core.errors import CoreError
from laneflow.core.git_ops import GitOps
from laneflow.core.integration.retry import ConflictResolver
from laneflow.core.state_store import StateStoreError
from laneflow.logging_config import get_logger
from laneflow.utils import atomic_write_text

logger = get_logger(__name__)

# During a rebase, stage 2 is the commit being rebased onto, stage 3 the commit being replayed.
_ONTO_STAGE = 2
_REPLAYED_STAGE = 3

# Rewrites derived files under the worktree root, returns their repo-relative paths.
DerivedWriter = Callable[[Path], list[str]]


def union_lines(onto: str, replayed: str) -> str:
    """Lines of `onto` in order, then the lines of `replayed` that `onto` lacks."""
    merged: list[str] = []
    seen: set[str] = set()
    for line in (*onto.splitlines(), *replayed.splitlines()):
        if not line.strip() or line in seen:
            continue
        seen.add(line)
        merged.append(line)
    return "".join(f"{line}\n" for line in merged)


def metadata_conflict_resolver(
    *,
    append_only: Iterable[str],
    derived: Iterable[str],
    regenerate: DerivedWriter | None = None,
) -> ConflictResolver:
    append_only_paths = set(append_only)
    derived_paths = set(derived)

    def resolve(git: GitOps) -> bool:
        conflicted = git.conflicted_paths()
        if not conflicted:
            return True
        foreign = [path for path in conflicted if path not in append_only_paths | derived_paths]
        if foreign:
            logger.warning("Rebase conflicts outside shared metadata: %s", ", ".join(foreign))
            return False

        root = git.working_dir
        for path in conflicted:
            onto = git.show_stage(_ONTO_STAGE, path)
            if path in append_only_paths:
                onto = union_lines(onto, git.show_stage(_REPLAYED_STAGE, path))
            atomic_write_text(root / path, onto)

        staged = list(conflicted)
        if regenerate is not None:
            try:
                staged.extend(path for path in regenerate(root) if path not in staged)
            except (CoreError, StateStoreError) as exc:
                logger.warning("Could not rebuild metadata after merging %s: %s", ", ".join(conflicted), exc)
                return False
        git.add(staged)
        logger.info("Merged concurrent metadata changes in %s", ", ".join(conflicted))
        return True

    return resolve
