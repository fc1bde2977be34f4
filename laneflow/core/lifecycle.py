"""WU lifecycle manager: create, claim, block, unblock, complete and recover.

Every metadata change (record, event log, stamp, boards) is committed in a
micro-worktree and pushed to trunk with retry, so concurrent agents only
ever race on the push. Lane branches and worktrees are created at claim time
and disposed of after completion according to the claimed mode.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal

from git.exc import GitCommandError

from laneflow.config.schema import LaneflowConfig
from laneflow.constants import (
    CMD_BLOCK,
    CMD_CLAIM,
    CMD_CREATE,
    CMD_DONE,
    CMD_RECOVER,
    CMD_UNBLOCK,
    OP_CLAIM,
    OP_CREATE,
    OP_DONE,
    is_valid_wu_id,
    lane_branch,
    worktree_dir_name,
)
from laneflow.core.boards import write_boards
from laneflow.core.context import ContextResolver, expected_worktree_path
from laneflow.core.errors import (
    CoreError,
    GateFailedError,
    InvalidWuRecordError,
    PredicateFailedError,
    TrunkOutOfSyncError,
    WrongWuStatusError,
    WuNotFoundError,
)
from laneflow.core.gates import (
    GATE_INVARIANTS,
    GateRunnerResolver,
    GateRunSummary,
    GateScheduler,
    TelemetrySink,
    build_gate_plan,
    command_resolver,
)
from laneflow.core.git_ops import GitOps, read_repo_state
from laneflow.core.integration.cleanup_lock import cleanup_lock
from laneflow.core.integration.force import ForceAuthorization
from laneflow.core.integration.metadata_merge import metadata_conflict_resolver
from laneflow.core.integration.micro_worktree import cleanup_orphaned_micro_worktree, with_micro_worktree
from laneflow.core.integration.retry import ConflictResolver, RetryPolicy
from laneflow.core.integration.staged_files import MetadataPaths, validate_staged_files
from laneflow.core.integration.trunk import (
    ParallelCompletionResult,
    completion_commit_message,
    delete_branch_with_merge_check,
    detect_parallel_completions,
    ensure_main_up_to_date,
)
from laneflow.core.invariants import invariants_gate
from laneflow.core.lanes import check_lane_admission, require_lane_admission
from laneflow.core.models import PR_MODES, WORKTREE_MODES, ClaimedMode, Context, WuRecord
from laneflow.core.risk import RiskAssessment, classify
from laneflow.core.stamps import has_stamp, stamp_path, write_stamp
from laneflow.core.state_store import EVENTS_FILENAME, WuStateStore
from laneflow.core.telemetry import JsonlTelemetrySink
from laneflow.core.validation import ValidationResult, raise_for_validation, validate_command
from laneflow.core.wu_document import (
    ReadyWu,
    block_document,
    claim_document,
    complete_document,
    load_wu_document,
    reset_document,
    save_wu_document,
    unblock_document,
    wu_document_path,
)
from laneflow.core.wu_state import WuStateReader
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

OP_BLOCK = "wu-block"
OP_UNBLOCK = "wu-unblock"
OP_RECOVER = "wu-recover"
MICRO_OPERATIONS: tuple[str, ...] = (OP_CREATE, OP_CLAIM, OP_DONE, OP_BLOCK, OP_UNBLOCK, OP_RECOVER)

RecoverAction = Literal["resume", "reset", "cleanup"]
GateResolverFactory = Callable[[Path], GateRunnerResolver]


@dataclass(frozen=True)
class ClaimResult:
    wu_id: str
    lane: str
    mode: ClaimedMode
    branch: str
    worktree_path: str | None
    baseline_main_sha: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompletionResult:
    wu_id: str
    already_done: bool
    mode: ClaimedMode | None = None
    risk: RiskAssessment | None = None
    gates: GateRunSummary | None = None
    parallel: ParallelCompletionResult | None = None
    push_attempts: int = 0
    worktree_removed: bool = False
    branch_deleted: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecoveryResult:
    wu_id: str
    action: RecoverAction
    steps: tuple[str, ...] = field(default_factory=tuple)


class WuLifecycle:
    """Executes WU state transitions against the shared repository."""

    def __init__(
        self,
        repo_root: Path,
        config: LaneflowConfig,
        *,
        session_id: str | None = None,
        gate_resolver_factory: GateResolverFactory | None = None,
        telemetry: TelemetrySink | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.repo_root = repo_root
        self.config = config
        self.session_id = session_id
        self.git = GitOps(repo_root)
        dirs = config.directories
        self.store = WuStateStore(state_dir=repo_root / dirs.state_dir)
        self.reader = self._reader_for(repo_root)
        self.resolver = ContextResolver.from_config(repo_root, config)
        self.retry_policy = retry_policy or RetryPolicy.from_config(config.git.push_retry)
        self.telemetry = telemetry if telemetry is not None else JsonlTelemetrySink(repo_root / dirs.telemetry_path)
        self._gate_resolver_factory = gate_resolver_factory or self._default_gate_resolver

    @property
    def remote(self) -> str:
        return self.config.git.remote

    @property
    def trunk(self) -> str:
        return self.config.git.trunk

    @property
    def local_only(self) -> bool:
        return not self.config.git.require_remote

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(
        self,
        wu_id: str,
        *,
        lane: str,
        title: str,
        code_paths: tuple[str, ...] = (),
        cwd: str | None = None,
    ) -> WuRecord:
        """Write a new ready WU record and its create event to trunk."""
        if not is_valid_wu_id(wu_id):
            raise InvalidWuRecordError(f"Invalid WU id: {wu_id!r} (expected WU-<number>)")
        self._validate(CMD_CREATE, cwd, wu_id)
        if wu_document_path(self.repo_root / self.config.directories.wu_dir, wu_id).exists():
            raise WrongWuStatusError(f"{wu_id} already exists", fix_command=f"laneflow wu:status --id {wu_id}")

        def execute(root: Path) -> list[str]:
            dirs = self.config.directories
            record_path = wu_document_path(root / dirs.wu_dir, wu_id)
            if record_path.exists():
                raise WrongWuStatusError(f"{wu_id} was created concurrently by another agent")
            save_wu_document(record_path, ReadyWu(id=wu_id, lane=lane, title=title, code_paths=list(code_paths)))
            self._store_for(root).create(wu_id, lane=lane, title=title)
            return [self._record_rel(wu_id), self._events_rel(), *self._write_boards(root)]

        self._publish(OP_CREATE, wu_id, execute, f"wu({wu_id.lower()}): create - {title}")
        logger.info("Created %s in lane %s", wu_id, lane)
        return self._require_record(wu_id)

    def claim(self, wu_id: str, *, mode: ClaimedMode = "worktree", cwd: str | None = None) -> ClaimResult:
        """Claim a ready WU: admit it to its lane, record the claim, create its branch."""
        self._require_record(wu_id)
        ctx = self._validate(CMD_CLAIM, cwd, wu_id)
        wu = ctx.wu
        assert wu is not None

        lane_config = self.config.lane(wu.lane)
        baseline = self._trunk_sha()
        branch = lane_branch(wu.lane, wu_id)
        worktree_rel = f"{self.config.directories.worktrees_dir}/{worktree_dir_name(wu.lane, wu_id)}"
        worktree_path = worktree_rel if mode in WORKTREE_MODES else None

        def execute(root: Path) -> list[str]:
            # Admission is decided on freshly fetched trunk, not the local checkout.
            require_lane_admission(wu.lane, wu_id, self._reader_for(root).read_all(), lane_config)
            record_path = wu_document_path(root / self.config.directories.wu_dir, wu_id)
            doc = load_wu_document(record_path)
            self._store_for(root).claim(wu_id, lane=wu.lane, title=wu.title)
            claimed = claim_document(
                doc,
                mode=mode,
                baseline_main_sha=baseline,
                worktree_path=worktree_path,
                session_id=self.session_id,
            )
            save_wu_document(record_path, claimed)
            return [self._record_rel(wu_id), self._events_rel(), *self._write_boards(root)]

        self._publish(OP_CLAIM, wu_id, execute, f"wu({wu_id.lower()}): claim - {wu.title}")
        branch_start = self._trunk_sha()

        absolute_worktree: str | None = None
        if worktree_path is not None:
            target = self.repo_root / worktree_path
            target.parent.mkdir(parents=True, exist_ok=True)
            self.git.worktree_add(target, branch, start_point=branch_start)
            absolute_worktree = str(target)
            logger.info("Created worktree for %s at %s", wu_id, target)
        else:
            self.git.create_branch(branch, branch_start)
            logger.info("Created branch %s for %s", branch, wu_id)

        warnings: list[str] = []
        recheck = check_lane_admission(wu.lane, wu_id, self.reader.read_all(), lane_config)
        if not recheck.admitted:
            message = (
                f"Lane '{wu.lane}' exceeded its WIP limit after claiming {wu_id} "
                f"(also held by {', '.join(recheck.holders)}); another agent claimed concurrently"
            )
            logger.warning("%s", message)
            warnings.append(message)

        return ClaimResult(
            wu_id=wu_id,
            lane=wu.lane,
            mode=mode,
            branch=branch,
            worktree_path=absolute_worktree,
            baseline_main_sha=baseline,
            warnings=tuple(warnings),
        )

    def block(self, wu_id: str, *, reason: str, cwd: str | None = None) -> WuRecord:
        self._require_record(wu_id)
        self._validate(CMD_BLOCK, cwd, wu_id)

        def execute(root: Path) -> list[str]:
            record_path = wu_document_path(root / self.config.directories.wu_dir, wu_id)
            self._store_for(root).block(wu_id, reason=reason)
            save_wu_document(record_path, block_document(load_wu_document(record_path), reason))
            return [self._record_rel(wu_id), self._events_rel(), *self._write_boards(root)]

        self._publish(OP_BLOCK, wu_id, execute, f"wu({wu_id.lower()}): block - {reason}")
        return self._require_record(wu_id)

    def unblock(self, wu_id: str, *, cwd: str | None = None) -> WuRecord:
        self._require_record(wu_id)
        self._validate(CMD_UNBLOCK, cwd, wu_id)

        def execute(root: Path) -> list[str]:
            record_path = wu_document_path(root / self.config.directories.wu_dir, wu_id)
            self._store_for(root).unblock(wu_id)
            save_wu_document(record_path, unblock_document(load_wu_document(record_path)))
            return [self._record_rel(wu_id), self._events_rel(), *self._write_boards(root)]

        self._publish(OP_UNBLOCK, wu_id, execute, f"wu({wu_id.lower()}): unblock")
        return self._require_record(wu_id)

    def complete(
        self,
        wu_id: str,
        *,
        cwd: str | None = None,
        full_lint: bool = False,
        full_tests: bool = False,
        full_coverage: bool = False,
    ) -> CompletionResult:
        """Gate and integrate an in-progress WU, then stamp it done.

        Re-running against a WU that already has a stamp is a no-op.
        """
        dirs = self.config.directories
        if has_stamp(self.repo_root / dirs.stamps_dir, wu_id):
            logger.info("%s already has a completion stamp; nothing to do", wu_id)
            return CompletionResult(wu_id=wu_id, already_done=True)

        self._require_record(wu_id)
        ctx = self._resolve(cwd, wu_id)
        validation = validate_command(CMD_DONE, ctx)
        raise_for_validation(validation)
        warnings = [issue.message for issue in validation.warnings]
        wu = ctx.wu
        assert wu is not None
        mode: ClaimedMode = wu.claimed_mode or "worktree"
        branch = lane_branch(wu.lane, wu_id)

        ensure_main_up_to_date(self.git, remote=self.remote, trunk=self.trunk, local_only=self.local_only)
        parallel = detect_parallel_completions(
            self.git,
            wu_id=wu_id,
            baseline_sha=wu.baseline_main_sha,
            remote=self.remote,
            trunk=self.trunk,
            local_only=self.local_only,
        )
        if parallel.warning:
            warnings.append(parallel.warning)

        risk = classify(self.git.diff_names(f"{self.trunk}...{branch}"))
        lane_checkout = self._lane_checkout(ctx, wu)
        summary = self._run_gates(
            risk,
            wu,
            lane_checkout,
            full_lint=full_lint,
            full_tests=full_tests,
            full_coverage=full_coverage,
        )
        if not summary.ok:
            raise GateFailedError(summary.failed_gate or "gates", f"{summary.failed_gate} failed\n{summary.render()}")

        with cleanup_lock(self.repo_root / dirs.locks_dir, wu_id, worktree_path=str(lane_checkout)):
            attempts = self._integrate(wu, branch, mode, docs_only=risk.is_docs_only)
            worktree_removed, branch_deleted = self._dispose(wu, branch, mode, lane_checkout)

        logger.info("Completed %s (%s mode, %s push attempt(s))", wu_id, mode, attempts)
        return CompletionResult(
            wu_id=wu_id,
            already_done=False,
            mode=mode,
            risk=risk,
            gates=summary,
            parallel=parallel,
            push_attempts=attempts,
            worktree_removed=worktree_removed,
            branch_deleted=branch_deleted,
            warnings=tuple(warnings),
        )

    def recover(
        self,
        wu_id: str,
        *,
        action: RecoverAction,
        discard_changes: bool = False,
        cwd: str | None = None,
    ) -> RecoveryResult:
        """Repair worktree, branch or state for a WU in any status."""
        self._validate(CMD_RECOVER, cwd, wu_id)
        wu = self._require_record(wu_id)
        with cleanup_lock(self.repo_root / self.config.directories.locks_dir, wu_id):
            if action == "resume":
                steps = self._recover_resume(wu)
            elif action == "reset":
                steps = self._recover_reset(wu, discard_changes=discard_changes)
            else:
                steps = self._recover_cleanup(wu)
        for step in steps:
            logger.info("recover %s %s: %s", action, wu_id, step)
        return RecoveryResult(wu_id=wu_id, action=action, steps=tuple(steps))

    def context(self, wu_id: str | None = None, cwd: str | None = None) -> Context:
        return self._resolve(cwd, wu_id)

    # ------------------------------------------------------------------
    # Completion internals
    # ------------------------------------------------------------------

    def _lane_checkout(self, ctx: Context, wu: WuRecord) -> Path:
        if wu.claimed_mode in (None, *WORKTREE_MODES) and ctx.location.main_checkout:
            path = expected_worktree_path(ctx.location.main_checkout, self.config.directories.worktrees_dir, wu)
            if path.exists():
                return path
        return self.repo_root

    def _run_gates(
        self,
        risk: RiskAssessment,
        wu: WuRecord,
        lane_checkout: Path,
        *,
        full_lint: bool,
        full_tests: bool,
        full_coverage: bool,
    ) -> GateRunSummary:
        on_trunk = read_repo_state(lane_checkout).branch in (self.trunk, "master")
        plan = build_gate_plan(
            risk,
            docs_only=risk.is_docs_only,
            full_lint=full_lint,
            full_tests=full_tests,
            full_coverage=full_coverage,
            on_trunk=on_trunk,
        )
        scheduler = GateScheduler(
            resolver=self._gate_resolver_factory(lane_checkout),
            telemetry=self.telemetry,
            strict_scripts=self.config.gates.strict_scripts,
            full_coverage=full_coverage,
            wu_id=wu.id,
            lane=wu.lane,
        )
        summary = scheduler.run(plan)
        logger.info("Gate summary for %s:\n%s", wu.id, summary.render())
        return summary

    def _default_gate_resolver(self, lane_checkout: Path) -> GateRunnerResolver:
        dirs = self.config.directories
        return command_resolver(
            self.config.gates.commands,
            cwd=lane_checkout,
            timeout_seconds=self.config.gates.timeout_seconds,
            builtins={GATE_INVARIANTS: invariants_gate(self.repo_root / dirs.wu_dir, self.repo_root / dirs.stamps_dir)},
        )

    def _integrate(self, wu: WuRecord, branch: str, mode: ClaimedMode, *, docs_only: bool) -> int:
        """Rebase the lane work onto its target, add completion metadata, publish."""
        pr_mode = mode in PR_MODES
        if pr_mode and self.local_only:
            raise CoreError(f"{mode} mode requires a remote", fix_command="set git.require_remote: true in .laneflow.yaml")
        rebase_onto = self.trunk if self.local_only else f"{self.remote}/{self.trunk}"
        metadata_paths = self._metadata_paths(wu.id)

        def execute(root: Path) -> list[str]:
            worktree_git = GitOps(root)
            worktree_git.reset_hard(branch)
            if not pr_mode:
                self._rebase_lane_work(worktree_git, wu, rebase_onto)
            return self._write_completion_metadata(root, wu.id)

        def check_staged(worktree_git: GitOps) -> None:
            validate_staged_files(
                worktree_git.staged_files(),
                metadata_paths,
                docs_only=docs_only,
                metadata_allowlist=self.config.metadata_allowlist,
            )

        result = with_micro_worktree(
            self.git,
            operation=OP_DONE,
            wu_id=wu.id,
            execute=execute,
            commit_message=completion_commit_message(wu.id, wu.title),
            remote=self.remote,
            trunk=self.trunk,
            local_only=self.local_only,
            push_target=branch if pr_mode else None,
            before_commit=check_staged,
            policy=self.retry_policy,
            force=ForceAuthorization(granted=not pr_mode, reason=f"laneflow {CMD_DONE} {wu.id}"),
            resolve_conflicts=self._metadata_resolver(),
        )
        return result.push_attempts

    def _rebase_lane_work(self, worktree_git: GitOps, wu: WuRecord, onto: str) -> None:
        try:
            worktree_git.rebase(onto)
        except GitCommandError as exc:
            try:
                worktree_git.rebase_abort()
            except GitCommandError as abort_exc:
                logger.warning("git rebase --abort failed: %s", abort_exc)
            behind = self.git.rev_list_count(f"{wu.baseline_main_sha or self.trunk}..{onto}")
            raise TrunkOutOfSyncError(
                f"Lane work for {wu.id} does not rebase cleanly onto {onto}: {exc}",
                ahead=0,
                behind=behind,
                fix_command=f"cd {wu.worktree_path or self.repo_root} && git fetch {self.remote} {self.trunk} && git rebase {onto}",
            ) from exc

    def _write_completion_metadata(self, root: Path, wu_id: str) -> list[str]:
        dirs = self.config.directories
        record_path = wu_document_path(root / dirs.wu_dir, wu_id)
        self._store_for(root).complete(wu_id)
        save_wu_document(record_path, complete_document(load_wu_document(record_path)))
        write_stamp(root / dirs.stamps_dir, wu_id)
        stamp_rel = stamp_path(Path(dirs.stamps_dir), wu_id).as_posix()
        return [self._record_rel(wu_id), self._events_rel(), stamp_rel, *self._write_boards(root)]

    def _dispose(self, wu: WuRecord, branch: str, mode: ClaimedMode, lane_checkout: Path) -> tuple[bool, bool]:
        """Remove the worktree (default mode only) and the merged lane branch."""
        if mode in PR_MODES:
            logger.info("Keeping worktree and branch for %s (%s mode)", wu.id, mode)
            return False, False

        worktree_removed = False
        if mode == "worktree" and lane_checkout != self.repo_root and lane_checkout.exists():
            try:
                self.git.worktree_remove(lane_checkout)
                worktree_removed = True
            except GitCommandError as exc:
                logger.warning("Could not remove worktree %s: %s", lane_checkout, exc)

        if self.git.current_branch() == branch:
            self.git.checkout(self.trunk)
        targets = [self.trunk] if self.local_only else [self.trunk, f"{self.remote}/{self.trunk}"]
        try:
            branch_deleted = delete_branch_with_merge_check(self.git, branch, targets)
        except GitCommandError as exc:
            logger.warning("Could not delete lane branch %s: %s", branch, exc)
            branch_deleted = False
        if branch_deleted and not self.local_only and self.git.remote_branch_exists(self.remote, branch):
            try:
                self.git.delete_remote_branch(self.remote, branch)
            except GitCommandError as exc:
                logger.warning("Could not delete remote branch %s: %s", branch, exc)
        return worktree_removed, branch_deleted

    # ------------------------------------------------------------------
    # Recovery internals
    # ------------------------------------------------------------------

    def _worktree_path(self, wu: WuRecord) -> Path:
        return expected_worktree_path(str(self.repo_root), self.config.directories.worktrees_dir, wu)

    def _recover_resume(self, wu: WuRecord) -> list[str]:
        if wu.status not in ("in_progress", "blocked"):
            raise WrongWuStatusError(f"Cannot resume {wu.id}: status is {wu.status}")
        branch = lane_branch(wu.lane, wu.id)
        steps: list[str] = []
        if not self.git.branch_exists(branch):
            start = wu.baseline_main_sha or self.trunk
            self.git.create_branch(branch, start)
            steps.append(f"recreated branch {branch} from {start[:12]}")
        if wu.claimed_mode in (None, *WORKTREE_MODES):
            path = self._worktree_path(wu)
            if not path.exists():
                self.git.worktree_prune()
                path.parent.mkdir(parents=True, exist_ok=True)
                self.git.worktree_add(path, branch)
                steps.append(f"recreated worktree {path}")
        return steps or ["nothing to resume"]

    def _recover_reset(self, wu: WuRecord, *, discard_changes: bool) -> list[str]:
        if wu.status == "done":
            raise WrongWuStatusError(f"Cannot reset {wu.id}: it is already done")
        steps: list[str] = []
        path = self._worktree_path(wu)
        if path.exists():
            state = read_repo_state(path)
            if not state.is_clean and not discard_changes:
                raise PredicateFailedError(
                    "worktree-clean",
                    f"Worktree {path} has uncommitted changes",
                    fix_command=f"laneflow wu:recover --id {wu.id} --action reset --discard-changes",
                )
            self.git.worktree_remove(path, force=True)
            steps.append(f"removed worktree {path}")

        branch = lane_branch(wu.lane, wu.id)
        if self.git.branch_exists(branch):
            self.git.delete_branch(branch, force=True)
            steps.append(f"deleted branch {branch}")
        if not self.local_only and self.git.remote_branch_exists(self.remote, branch):
            self.git.delete_remote_branch(self.remote, branch)
            steps.append(f"deleted remote branch {self.remote}/{branch}")

        def execute(root: Path) -> list[str]:
            record_path = wu_document_path(root / self.config.directories.wu_dir, wu.id)
            store = self._store_for(root)
            entry = store.get(wu.id)
            if entry is not None and entry.status in ("in_progress", "blocked"):
                store.release(wu.id, reason="recover reset")
            save_wu_document(record_path, reset_document(load_wu_document(record_path)))
            return [self._record_rel(wu.id), self._events_rel(), *self._write_boards(root)]

        self._publish(OP_RECOVER, wu.id, execute, f"wu({wu.id.lower()}): reset to ready")
        steps.append("reset record to ready")
        return steps

    def _recover_cleanup(self, wu: WuRecord) -> list[str]:
        steps: list[str] = []
        for operation in MICRO_OPERATIONS:
            cleaned = cleanup_orphaned_micro_worktree(self.git, operation, wu.id)
            if cleaned.cleaned_worktree or cleaned.cleaned_branch:
                steps.append(f"removed orphaned {operation} micro-worktree")
        if wu.status == "done" and wu.claimed_mode not in PR_MODES:
            path = self._worktree_path(wu)
            if path.exists():
                self.git.worktree_remove(path, force=True)
                steps.append(f"removed worktree {path}")
            branch = lane_branch(wu.lane, wu.id)
            if self.git.branch_exists(branch):
                targets = [self.trunk] if self.local_only else [self.trunk, f"{self.remote}/{self.trunk}"]
                if delete_branch_with_merge_check(self.git, branch, targets):
                    steps.append(f"deleted branch {branch}")
        return steps or ["nothing to clean up"]

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _resolve(self, cwd: str | None, wu_id: str | None) -> Context:
        return self.resolver.resolve(cwd or str(self.repo_root), wu_id)

    def _validate(self, command: str, cwd: str | None, wu_id: str | None) -> Context:
        ctx = self._resolve(cwd, wu_id)
        result: ValidationResult = validate_command(command, ctx)
        for warning in result.warnings:
            logger.warning("%s", warning.message)
        raise_for_validation(result)
        return ctx

    def _require_record(self, wu_id: str) -> WuRecord:
        record = self.reader.read(wu_id)
        if record is None:
            raise WuNotFoundError(
                f"{wu_id} not found",
                fix_command=f'laneflow wu:create --id {wu_id} --lane "<lane>" --title "<title>"',
            )
        return record

    def _trunk_sha(self) -> str:
        if self.local_only:
            return self.git.rev_parse(self.trunk)
        self.git.fetch(self.remote, self.trunk)
        return self.git.rev_parse(f"{self.remote}/{self.trunk}")

    def _publish(self, operation: str, wu_id: str, execute: Callable[[Path], list[str]], message: str) -> int:
        result = with_micro_worktree(
            self.git,
            operation=operation,
            wu_id=wu_id,
            execute=execute,
            commit_message=message,
            remote=self.remote,
            trunk=self.trunk,
            local_only=self.local_only,
            policy=self.retry_policy,
            force=ForceAuthorization(granted=True, reason=f"laneflow {operation} {wu_id}"),
            resolve_conflicts=self._metadata_resolver(),
        )
        return result.push_attempts

    def _metadata_resolver(self) -> ConflictResolver:
        dirs = self.config.directories
        return metadata_conflict_resolver(
            append_only=[self._events_rel()],
            derived=[dirs.status_path, dirs.backlog_path],
            regenerate=self._write_boards,
        )

    def _reader_for(self, root: Path) -> WuStateReader:
        dirs = self.config.directories
        return WuStateReader(wu_dir=root / dirs.wu_dir, store=self._store_for(root), stamps_dir=root / dirs.stamps_dir)

    def _store_for(self, root: Path) -> WuStateStore:
        return WuStateStore(state_dir=root / self.config.directories.state_dir)

    def _write_boards(self, root: Path) -> list[str]:
        return write_boards(root, self.config.directories, self._reader_for(root).read_all())

    def _record_rel(self, wu_id: str) -> str:
        return f"{self.config.directories.wu_dir}/{wu_id}.yaml"

    def _events_rel(self) -> str:
        return f"{self.config.directories.state_dir}/{EVENTS_FILENAME}"

    def _metadata_paths(self, wu_id: str) -> MetadataPaths:
        dirs = self.config.directories
        return MetadataPaths(
            wu_dir=dirs.wu_dir,
            wu_record=self._record_rel(wu_id),
            status=dirs.status_path,
            backlog=dirs.backlog_path,
            events=self._events_rel(),
            stamps_dir=dirs.stamps_dir,
        )


def session_id_from_env() -> str | None:
    return os.environ.get("LANEFLOW_SESSION_ID") or None
