"""End-to-end WU lifecycle against real git repositories."""

from pathlib import Path
from unittest.mock import patch

import pytest
from git import Repo

from laneflow.config import load_project_config
from laneflow.core.errors import (
    CoreError,
    GateFailedError,
    LaneOccupiedError,
    PredicateFailedError,
    WrongWuStatusError,
)
from laneflow.core.gates import GATE_INVARIANTS, GateResult
from laneflow.core.git_ops import GitOps, read_repo_state
from laneflow.core.integration.micro_worktree import cleanup_orphaned_micro_worktree
from laneflow.core.lifecycle import WuLifecycle

STAMPS = Path(".laneflow/stamps")


def _branches(repo: Repo) -> list[str]:
    return [head.name for head in repo.heads]


@pytest.mark.integration
def test_lane_wip_limit_and_completion(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    lifecycle.create("WU-101", lane="Core", title="Printer")

    claim = lifecycle.claim("WU-100")
    assert claim.branch == "lane/core/wu-100"
    assert claim.worktree_path == str(workspace.root / "worktrees" / "core-wu-100")
    assert Path(claim.worktree_path).is_dir()
    assert claim.warnings == ()

    with pytest.raises(LaneOccupiedError) as exc_info:
        lifecycle.claim("WU-101")
    assert exc_info.value.holders == ["WU-100"]

    workspace.commit_work(claim.worktree_path, "src/parser.py")
    result = lifecycle.complete("WU-100")

    assert not result.already_done
    assert result.mode == "worktree"
    assert result.gates is not None and result.gates.ok
    assert result.push_attempts == 1
    assert result.worktree_removed
    assert result.branch_deleted
    assert not Path(claim.worktree_path).exists()
    assert "lane/core/wu-100" not in _branches(workspace.repo)
    assert (workspace.root / STAMPS / "WU-100.done").exists()
    assert (workspace.root / "src" / "parser.py").exists()
    assert "value = 1" in workspace.remote.git.show("main:src/parser.py")
    assert lifecycle.reader.read("WU-100").status == "done"
    assert any(event["gate_name"] == GATE_INVARIANTS for event in workspace.gate_events)

    second = lifecycle.claim("WU-101")
    assert second.branch == "lane/core/wu-101"


@pytest.mark.integration
def test_completion_is_idempotent(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = lifecycle.claim("WU-100")
    workspace.commit_work(claim.worktree_path, "src/parser.py")
    lifecycle.complete("WU-100")
    stamp = (workspace.root / STAMPS / "WU-100.done").read_bytes()
    remote_head = workspace.remote.git.rev_parse("main")

    again = lifecycle.complete("WU-100")

    assert again.already_done
    assert (workspace.root / STAMPS / "WU-100.done").read_bytes() == stamp
    assert workspace.remote.git.rev_parse("main") == remote_head


@pytest.mark.integration
def test_parallel_completion_is_reported(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    lifecycle.create("WU-200", lane="UI", title="Panel")
    core = lifecycle.claim("WU-100")
    ui = lifecycle.claim("WU-200")
    workspace.commit_work(core.worktree_path, "src/parser.py")
    workspace.commit_work(ui.worktree_path, "ui/panel.py")

    first = lifecycle.complete("WU-200")
    second = lifecycle.complete("WU-100")

    assert not first.parallel.has_parallel
    assert second.parallel.has_parallel
    assert second.parallel.completed_wus == ("WU-200",)
    assert any("WU-200" in warning for warning in second.warnings)
    assert second.branch_deleted
    assert workspace.remote.git.show("main:ui/panel.py")
    assert workspace.remote.git.show("main:src/parser.py")


@pytest.mark.integration
def test_failed_gate_leaves_wu_in_progress(workspace):
    def failing_invariants(_checkout: Path):
        def resolve(step):
            if step.name == GATE_INVARIANTS:
                return lambda: GateResult(ok=False, duration_ms=1.0, output="broken")
            return None

        return resolve

    workspace.lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = workspace.lifecycle.claim("WU-100")
    workspace.commit_work(claim.worktree_path, "src/parser.py")
    lifecycle = WuLifecycle(
        workspace.root,
        load_project_config(workspace.root),
        gate_resolver_factory=failing_invariants,
        telemetry=workspace.gate_events.append,
    )

    with pytest.raises(GateFailedError) as exc_info:
        lifecycle.complete("WU-100")

    assert exc_info.value.gate_name == GATE_INVARIANTS
    assert lifecycle.reader.read("WU-100").status == "in_progress"
    assert not (workspace.root / STAMPS / "WU-100.done").exists()
    assert Path(claim.worktree_path).is_dir()


@pytest.mark.integration
def test_block_keeps_lane_occupied_until_unblocked(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    lifecycle.create("WU-101", lane="Core", title="Printer")
    lifecycle.claim("WU-100")

    blocked = lifecycle.block("WU-100", reason="waiting on review")

    assert blocked.status == "blocked"
    with pytest.raises(LaneOccupiedError):
        lifecycle.claim("WU-101")
    with pytest.raises(WrongWuStatusError):
        lifecycle.block("WU-100", reason="again")
    assert lifecycle.unblock("WU-100").status == "in_progress"


@pytest.mark.integration
def test_branch_only_mode_integrates_from_main_checkout(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")

    claim = lifecycle.claim("WU-100", mode="branch-only")

    assert claim.worktree_path is None
    assert "lane/core/wu-100" in _branches(workspace.repo)
    workspace.repo.git.checkout("lane/core/wu-100")
    workspace.commit_work(workspace.root, "src/parser.py")
    workspace.repo.git.checkout("main")

    result = lifecycle.complete("WU-100")

    assert result.mode == "branch-only"
    assert not result.worktree_removed
    assert result.branch_deleted
    assert workspace.remote.git.show("main:src/parser.py")


@pytest.mark.integration
def test_local_only_mode_fast_forwards_trunk(local_workspace):
    lifecycle = local_workspace.lifecycle
    assert lifecycle.local_only
    lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = lifecycle.claim("WU-100")
    local_workspace.commit_work(claim.worktree_path, "src/parser.py")

    result = lifecycle.complete("WU-100")

    assert result.push_attempts == 0
    assert result.branch_deleted
    tracked = local_workspace.repo.git.ls_tree("-r", "--name-only", "main").splitlines()
    assert "src/parser.py" in tracked
    assert ".laneflow/stamps/WU-100.done" in tracked
    assert local_workspace.repo.git.log("-1", "--format=%s", "main") == "wu(wu-100): done - Parser"


@pytest.mark.integration
def test_local_only_mode_rejects_pr_modes(local_workspace):
    lifecycle = local_workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = lifecycle.claim("WU-100", mode="worktree-pr")
    local_workspace.commit_work(claim.worktree_path, "src/parser.py")

    with pytest.raises(CoreError, match="requires a remote"):
        lifecycle.complete("WU-100")


@pytest.mark.integration
def test_recover_reset_refuses_dirty_worktree_without_discard(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = lifecycle.claim("WU-100")
    (Path(claim.worktree_path) / "README.md").write_text("# edited\n", encoding="utf-8")

    with pytest.raises(PredicateFailedError):
        lifecycle.recover("WU-100", action="reset")

    recovery = lifecycle.recover("WU-100", action="reset", discard_changes=True)

    assert "reset record to ready" in recovery.steps
    assert not Path(claim.worktree_path).exists()
    assert "lane/core/wu-100" not in _branches(workspace.repo)
    assert lifecycle.reader.read("WU-100").status == "ready"
    assert lifecycle.claim("WU-100").branch == "lane/core/wu-100"


@pytest.mark.integration
def test_recover_resume_recreates_missing_worktree(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = lifecycle.claim("WU-100")
    workspace.repo.git.worktree("remove", "--force", claim.worktree_path)

    recovery = lifecycle.recover("WU-100", action="resume")

    assert any(step.startswith("recreated worktree") for step in recovery.steps)
    assert Path(claim.worktree_path).is_dir()


@pytest.mark.integration
def test_micro_worktree_cleanup_is_noop_when_nothing_is_left(workspace):
    git = GitOps(workspace.root)

    cleaned = cleanup_orphaned_micro_worktree(git, "wu-done", "WU-1")

    assert not cleaned.cleaned_worktree
    assert not cleaned.cleaned_branch


@pytest.mark.integration
def test_recover_cleanup_removes_orphaned_micro_worktree(workspace, tmp_path):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    orphan = tmp_path / "orphan"
    workspace.repo.git.worktree("add", "-b", "tmp/wu-claim/wu-100", str(orphan), "main")

    recovery = lifecycle.recover("WU-100", action="cleanup")

    assert recovery.steps == ("removed orphaned wu-claim micro-worktree",)
    assert not orphan.exists()
    assert "tmp/wu-claim/wu-100" not in _branches(workspace.repo)


@pytest.mark.integration
def test_lane_commits_are_counted_against_trunk(workspace):
    lifecycle = workspace.lifecycle
    lifecycle.create("WU-100", lane="Core", title="Parser")
    claim = lifecycle.claim("WU-100")
    workspace.commit_work(claim.worktree_path, "src/parser.py")

    state = read_repo_state(claim.worktree_path)
    assert state.tracking is None
    assert state.ahead == 1

    result = lifecycle.complete("WU-100")

    assert not any(warning.startswith("has-commits") for warning in result.warnings)


@pytest.mark.integration
def test_concurrent_metadata_publish_is_merged_on_retry(workspace, second_agent):
    original_commit = GitOps.commit
    raced: list[str] = []

    def commit_then_other_agent_publishes(self, message):
        original_commit(self, message)
        if not raced:
            raced.append(message)
            workspace.lifecycle.create("WU-100", lane="Core", title="Parser")

    with patch.object(GitOps, "commit", commit_then_other_agent_publishes):
        second_agent.lifecycle.create("WU-200", lane="UI", title="Panel")

    assert raced == ["wu(wu-200): create - Panel"]
    events = workspace.remote.git.show("main:.laneflow/state/wu-events.jsonl").splitlines()
    assert len(events) == 2
    assert any('"wu_id": "WU-100"' in line for line in events)
    assert any('"wu_id": "WU-200"' in line for line in events)
    backlog = workspace.remote.git.show("main:docs/tasks/backlog.md")
    assert "WU-100: Parser (Core)" in backlog
    assert "WU-200: Panel (UI)" in backlog
    assert second_agent.lifecycle.reader.read("WU-100").status == "ready"
    assert second_agent.lifecycle.reader.read("WU-200").status == "ready"


@pytest.mark.integration
def test_claim_admission_sees_claims_pushed_by_other_agents(workspace, second_agent):
    workspace.lifecycle.create("WU-100", lane="Core", title="Parser")
    workspace.lifecycle.create("WU-101", lane="Core", title="Printer")
    second_agent.repo.git.pull("--ff-only")
    workspace.lifecycle.claim("WU-100")

    with pytest.raises(LaneOccupiedError) as exc_info:
        second_agent.lifecycle.claim("WU-101")

    assert exc_info.value.holders == ["WU-100"]
    events = workspace.remote.git.show("main:.laneflow/state/wu-events.jsonl")
    assert events.count('"type": "claim"') == 1
    assert "lane/core/wu-101" not in _branches(second_agent.repo)
