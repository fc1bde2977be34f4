"""Fixtures that build real git repositories for lifecycle tests."""

from dataclasses import dataclass
from pathlib import Path

import pytest
from git import Repo

from laneflow.config import load_project_config
from laneflow.core.lifecycle import WuLifecycle

CONFIG = """\
lanes:
  - name: Core
    wip_limit: 1
  - name: UI
agent_patterns:
  disable_registry: true
git:
  require_remote: {require_remote}
  push_retry:
    min_delay_ms: 0
    max_delay_ms: 0
"""

GITIGNORE = """\
worktrees/
.laneflow/locks/
.laneflow/telemetry/
.laneflow/cache/
"""


@dataclass
class Workspace:
    root: Path
    repo: Repo
    remote: Repo | None
    lifecycle: WuLifecycle
    gate_events: list

    def commit_work(self, worktree: Path | str, filename: str, content: str = "value = 1\n") -> None:
        """Commit one new file on the lane checkout at `worktree`."""
        path = Path(worktree) / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        checkout = Repo(str(worktree))
        checkout.git.add(filename)
        checkout.git.commit("-m", f"feat: add {filename}")


def _configure_identity(repo: Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Laneflow Test")
        writer.set_value("user", "email", "laneflow@example.com")
        writer.set_value("commit", "gpgsign", "false")


def _lifecycle(root: Path, gate_events: list) -> WuLifecycle:
    return WuLifecycle(root, load_project_config(root), telemetry=gate_events.append)


def _init_workspace(tmp_path: Path, *, with_remote: bool) -> Workspace:
    root = tmp_path / "repo"
    root.mkdir()
    repo = Repo.init(str(root), initial_branch="main")
    _configure_identity(repo)

    (root / ".laneflow.yaml").write_text(
        CONFIG.format(require_remote="true" if with_remote else "false"), encoding="utf-8"
    )
    (root / ".gitignore").write_text(GITIGNORE, encoding="utf-8")
    (root / "README.md").write_text("# Sample project\n", encoding="utf-8")
    repo.git.add(".laneflow.yaml", ".gitignore", "README.md")
    repo.git.commit("-m", "chore: initial commit")

    remote: Repo | None = None
    if with_remote:
        remote = Repo.init(str(tmp_path / "remote.git"), bare=True, initial_branch="main")
        repo.create_remote("origin", str(tmp_path / "remote.git"))
        repo.git.push("-u", "origin", "main")

    gate_events: list = []
    return Workspace(root=root, repo=repo, remote=remote, lifecycle=_lifecycle(root, gate_events), gate_events=gate_events)


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """Main checkout pushing to a bare `origin`."""
    return _init_workspace(tmp_path, with_remote=True)


@pytest.fixture
def local_workspace(tmp_path: Path) -> Workspace:
    """Main checkout with no remote (local-only mode)."""
    return _init_workspace(tmp_path, with_remote=False)


@pytest.fixture
def second_agent(workspace: Workspace, tmp_path: Path) -> Workspace:
    """A second agent's clone of the same `origin`."""
    root = tmp_path / "agent-b"
    repo = Repo.clone_from(str(tmp_path / "remote.git"), str(root))
    _configure_identity(repo)
    gate_events: list = []
    return Workspace(
        root=root, repo=repo, remote=workspace.remote, lifecycle=_lifecycle(root, gate_events), gate_events=gate_events
    )
