"""Static registry of WU lifecycle commands and their preconditions."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Literal, Mapping

from laneflow.constants import (
    CMD_BLOCK,
    CMD_CLAIM,
    CMD_CREATE,
    CMD_DONE,
    CMD_RECOVER,
    CMD_STATUS,
    CMD_UNBLOCK,
)
from laneflow.core.models import Context, RepoState, WuStatus

Severity = Literal["error", "warning"]
RequiredLocation = Literal["main", "worktree"]


@dataclass(frozen=True)
class Predicate:
    """A named precondition evaluated against a context snapshot."""

    id: str
    description: str
    severity: Severity
    check: Callable[[Context], bool]
    fix_message: Callable[[Context], str]


@dataclass(frozen=True)
class CommandDefinition:
    name: str
    description: str
    required_location: RequiredLocation | None
    required_wu_status: WuStatus | None
    predicates: tuple[Predicate, ...] = ()
    next_steps: Callable[[Context], list[str]] = field(default=lambda _ctx: [])


def wu_arg(ctx: Context) -> str:
    return f" --id {ctx.wu.id}" if ctx.wu is not None else ""


def done_target_state(ctx: Context) -> RepoState:
    """The checkout whose cleanliness gates `done`: the WU worktree when known."""
    return ctx.worktree_git if ctx.worktree_git is not None else ctx.git


def _worktree_clean(ctx: Context) -> bool:
    return done_target_state(ctx).is_clean


def _worktree_clean_fix(ctx: Context) -> str:
    state = done_target_state(ctx)
    wu_id = ctx.wu.id if ctx.wu else "WU"
    target = ctx.wu.worktree_path if (ctx.worktree_git is not None and ctx.wu and ctx.wu.worktree_path) else None
    cd = f"cd {target} && " if target else ""
    if state.read_error:
        return f"{cd}git status"
    return f'{cd}git add -A && git commit -m "{wu_id.lower()}: commit pending changes"'


def _has_commits(ctx: Context) -> bool:
    return done_target_state(ctx).ahead > 0


def _state_consistent(ctx: Context) -> bool:
    return ctx.wu is None or ctx.wu.is_consistent


def _state_consistent_fix(ctx: Context) -> str:
    main = ctx.location.main_checkout or "."
    return f"cd {main} && laneflow {CMD_RECOVER}{wu_arg(ctx)} --action resume"


WORKTREE_CLEAN = Predicate(
    id="worktree-clean",
    description="WU worktree has no uncommitted tracked changes",
    severity="error",
    check=_worktree_clean,
    fix_message=_worktree_clean_fix,
)

HAS_COMMITS = Predicate(
    id="has-commits",
    description="Lane branch has commits to integrate",
    severity="warning",
    check=_has_commits,
    fix_message=lambda ctx: "git log --oneline -5",
)

STATE_CONSISTENT = Predicate(
    id="state-consistent",
    description="State store and WU record agree",
    severity="error",
    check=_state_consistent,
    fix_message=_state_consistent_fix,
)


def _claim_next_steps(ctx: Context) -> list[str]:
    return [f"laneflow {CMD_CLAIM}{wu_arg(ctx)}", "cd into the created worktree and start work"]


def _done_next_steps(ctx: Context) -> list[str]:
    return [f"laneflow {CMD_STATUS}{wu_arg(ctx)}"]


def _build_registry() -> Mapping[str, CommandDefinition]:
    definitions = (
        CommandDefinition(
            name=CMD_CREATE,
            description="Create a new WU record",
            required_location="main",
            required_wu_status=None,
            next_steps=_claim_next_steps,
        ),
        CommandDefinition(
            name=CMD_CLAIM,
            description="Claim a ready WU and create its lane worktree",
            required_location="main",
            required_wu_status="ready",
            next_steps=lambda ctx: ["cd into the WU worktree", f"laneflow {CMD_DONE}{wu_arg(ctx)}"],
        ),
        CommandDefinition(
            name=CMD_DONE,
            description="Run gates, integrate the lane branch into trunk and stamp the WU",
            required_location="main",
            required_wu_status="in_progress",
            predicates=(WORKTREE_CLEAN, HAS_COMMITS, STATE_CONSISTENT),
            next_steps=_done_next_steps,
        ),
        CommandDefinition(
            name=CMD_BLOCK,
            description="Mark an in-progress WU as blocked",
            required_location=None,
            required_wu_status="in_progress",
            next_steps=lambda ctx: [f"laneflow {CMD_UNBLOCK}{wu_arg(ctx)}"],
        ),
        CommandDefinition(
            name=CMD_UNBLOCK,
            description="Resume a blocked WU",
            required_location=None,
            required_wu_status="blocked",
            next_steps=lambda ctx: [f"laneflow {CMD_DONE}{wu_arg(ctx)}"],
        ),
        CommandDefinition(
            name=CMD_STATUS,
            description="Show WU and location status",
            required_location=None,
            required_wu_status=None,
        ),
        CommandDefinition(
            name=CMD_RECOVER,
            description="Repair a WU whose worktree, branch or state is inconsistent",
            required_location="main",
            required_wu_status=None,
            next_steps=lambda ctx: [f"laneflow {CMD_STATUS}{wu_arg(ctx)}"],
        ),
    )
    return MappingProxyType({definition.name: definition for definition in definitions})


COMMAND_REGISTRY: Mapping[str, CommandDefinition] = _build_registry()


def get_command_definition(name: str) -> CommandDefinition | None:
    return COMMAND_REGISTRY.get(name)
