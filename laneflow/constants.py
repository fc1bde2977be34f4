"""Constants used across Laneflow.

Naming conventions for branches, worktrees and command names live here so
every module derives them the same way.
"""

import re

# Git layout
TRUNK_BRANCH = "main"
DEFAULT_REMOTE = "origin"
LANE_BRANCH_PREFIX = "lane"
TEMP_BRANCH_PREFIX = "tmp"

# Work unit ids
WU_ID_PATTERN = re.compile(r"^WU-\d+$")
WORKTREE_WU_SUFFIX = re.compile(r"-(wu-\d+)$", re.IGNORECASE)

# Ambient force-push authorization
FORCE_ENV = "LANEFLOW_FORCE"
FORCE_REASON_ENV = "LANEFLOW_FORCE_REASON"

# Config file at repository root
CONFIG_FILENAME = ".laneflow.yaml"

# Command names
CMD_CREATE = "wu:create"
CMD_CLAIM = "wu:claim"
CMD_DONE = "wu:done"
CMD_BLOCK = "wu:block"
CMD_UNBLOCK = "wu:unblock"
CMD_STATUS = "wu:status"
CMD_RECOVER = "wu:recover"

# Micro-worktree operation names
OP_CREATE = "wu-create"
OP_CLAIM = "wu-claim"
OP_DONE = "wu-done"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def to_kebab(value: str) -> str:
    """Convert a free-text lane name to kebab case ("Framework: Core" -> "framework-core")."""
    return _NON_ALNUM.sub("-", value.strip().lower()).strip("-")


def is_valid_wu_id(wu_id: str) -> bool:
    return bool(WU_ID_PATTERN.match(wu_id))


def lane_branch(lane: str, wu_id: str) -> str:
    """Return the permanent work branch for a WU: lane/<lane-kebab>/<wu-id-lower>."""
    return f"{LANE_BRANCH_PREFIX}/{to_kebab(lane)}/{wu_id.lower()}"


def worktree_dir_name(lane: str, wu_id: str) -> str:
    """Return the worktree directory name for a WU: <lane-kebab>-<wu-id-lower>."""
    return f"{to_kebab(lane)}-{wu_id.lower()}"


def temp_branch_name(operation: str, wu_id: str) -> str:
    """Return the ephemeral branch for a metadata operation: tmp/<operation>/<wu-id-lower>."""
    return f"{TEMP_BRANCH_PREFIX}/{operation}/{wu_id.lower()}"


def wu_id_from_worktree_name(name: str) -> str | None:
    """Infer the WU id encoded in a worktree directory name, if any."""
    match = WORKTREE_WU_SUFFIX.search(name)
    if not match:
        return None
    return match.group(1).upper()
