"""Command line entry point: `laneflow <command> [options]`."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from git.exc import GitCommandError

from laneflow.config import load_project_config
from laneflow.constants import (
    CMD_BLOCK,
    CMD_CLAIM,
    CMD_CREATE,
    CMD_DONE,
    CMD_RECOVER,
    CMD_STATUS,
    CMD_UNBLOCK,
)
from laneflow.core.agent_patterns import is_agent_branch, resolve_agent_patterns
from laneflow.core.context import resolve_location
from laneflow.core.errors import CoreError, WrongLocationError, format_error
from laneflow.core.gates import GateRunSummary
from laneflow.core.invariants import check_invariants
from laneflow.core.lifecycle import WuLifecycle, session_id_from_env
from laneflow.core.models import CLAIMED_MODES
from laneflow.core.validation import get_valid_commands_for_context
from laneflow.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="laneflow", description="Lane-based work unit workflow for git repos.")
    parser.add_argument("--log-level", default=None, help="Override LANEFLOW_LOG_LEVEL.")
    parser.add_argument("--config", type=Path, default=None, help="Path to .laneflow.yaml.")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser(CMD_CREATE, help="Create a ready WU.")
    create.add_argument("--id", required=True)
    create.add_argument("--lane", required=True)
    create.add_argument("--title", required=True)
    create.add_argument("--code-path", action="append", default=[], dest="code_paths")

    claim = sub.add_parser(CMD_CLAIM, help="Claim a ready WU.")
    claim.add_argument("--id", required=True)
    claim.add_argument("--mode", choices=CLAIMED_MODES, default="worktree")

    done = sub.add_parser(CMD_DONE, help="Gate, integrate and stamp an in-progress WU.")
    done.add_argument("--id", required=True)
    done.add_argument("--full-lint", action="store_true")
    done.add_argument("--full-tests", action="store_true")
    done.add_argument("--full-coverage", action="store_true")

    block = sub.add_parser(CMD_BLOCK, help="Block an in-progress WU.")
    block.add_argument("--id", required=True)
    block.add_argument("--reason", required=True)

    unblock = sub.add_parser(CMD_UNBLOCK, help="Unblock a blocked WU.")
    unblock.add_argument("--id", required=True)

    status = sub.add_parser(CMD_STATUS, help="Show location, WU state and valid commands.")
    status.add_argument("--id", default=None)

    recover = sub.add_parser(CMD_RECOVER, help="Repair worktree, branch or state for a WU.")
    recover.add_argument("--id", required=True)
    recover.add_argument("--action", choices=("resume", "reset", "cleanup"), required=True)
    recover.add_argument("--discard-changes", action="store_true")

    sub.add_parser("gates", help="Run the invariants check only.")
    return parser


def _print_gates(summary: GateRunSummary | None) -> None:
    if summary is not None:
        print(summary.render())


def _status(lifecycle: WuLifecycle, cwd: str, wu_id: str | None) -> int:
    ctx = lifecycle.context(wu_id, cwd)
    print(f"location: {ctx.location.type} ({ctx.location.repo_root})")
    print(f"branch: {ctx.git.branch or '(detached)'}{' dirty' if ctx.git.is_dirty else ''}")
    if ctx.wu is not None:
        print(f"wu: {ctx.wu.id} [{ctx.wu.status}] lane={ctx.wu.lane} - {ctx.wu.title}")
        if not ctx.wu.is_consistent:
            print(f"  inconsistent: {ctx.wu.inconsistency_reason}")
    config = lifecycle.config
    agents = resolve_agent_patterns(config.agent_patterns, cache_dir=lifecycle.repo_root / config.directories.cache_dir)
    if is_agent_branch(ctx.git.branch, agents.patterns):
        print("agent branch: yes")
    print("valid commands: " + (", ".join(get_valid_commands_for_context(ctx)) or "none"))
    return 0


def _gates(lifecycle: WuLifecycle) -> int:
    dirs = lifecycle.config.directories
    problems = check_invariants(lifecycle.repo_root / dirs.wu_dir, lifecycle.repo_root / dirs.stamps_dir)
    for problem in problems:
        print(problem)
    return 1 if problems else 0


def _run(args: argparse.Namespace, cwd: str) -> int:
    location = resolve_location(cwd)
    if location.main_checkout is None:
        raise WrongLocationError(f"{cwd} is not inside a git repository")
    repo_root = Path(location.main_checkout)
    config = load_project_config(repo_root, args.config)
    lifecycle = WuLifecycle(repo_root, config, session_id=session_id_from_env())

    if args.command == CMD_CREATE:
        record = lifecycle.create(args.id, lane=args.lane, title=args.title, code_paths=tuple(args.code_paths), cwd=cwd)
        print(f"Created {record.id} ({record.lane}): {record.title}")
    elif args.command == CMD_CLAIM:
        claim = lifecycle.claim(args.id, mode=args.mode, cwd=cwd)
        print(f"Claimed {claim.wu_id} on {claim.branch}")
        if claim.worktree_path:
            print(f"NEXT: cd {claim.worktree_path}")
        for warning in claim.warnings:
            print(f"WARNING: {warning}", file=sys.stderr)
    elif args.command == CMD_DONE:
        result = lifecycle.complete(
            args.id,
            cwd=cwd,
            full_lint=args.full_lint,
            full_tests=args.full_tests,
            full_coverage=args.full_coverage,
        )
        if result.already_done:
            print(f"{result.wu_id} is already done")
        else:
            _print_gates(result.gates)
            print(f"Completed {result.wu_id}")
        for warning in result.warnings:
            print(f"WARNING: {warning}", file=sys.stderr)
    elif args.command == CMD_BLOCK:
        record = lifecycle.block(args.id, reason=args.reason, cwd=cwd)
        print(f"Blocked {record.id}")
    elif args.command == CMD_UNBLOCK:
        record = lifecycle.unblock(args.id, cwd=cwd)
        print(f"Unblocked {record.id}")
    elif args.command == CMD_STATUS:
        return _status(lifecycle, cwd, args.id or location.worktree_wu_id)
    elif args.command == CMD_RECOVER:
        recovery = lifecycle.recover(args.id, action=args.action, discard_changes=args.discard_changes, cwd=cwd)
        for step in recovery.steps:
            print(step)
    else:
        return _gates(lifecycle)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    try:
        return _run(args, os.getcwd())
    except CoreError as exc:
        print(exc.render(), file=sys.stderr)
        return 1
    except GitCommandError as exc:
        logger.error("git command failed: %s", exc)
        print(format_error("GitCommandFailed", str(exc)), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
