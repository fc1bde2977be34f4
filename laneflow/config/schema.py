from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from laneflow.constants import DEFAULT_REMOTE, TRUNK_BRANCH

LockPolicy = Literal["all", "active", "none"]


class DirectoriesConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    wu_dir: str = "docs/tasks/wu"
    status_path: str = "docs/tasks/status.md"
    backlog_path: str = "docs/tasks/backlog.md"
    state_dir: str = ".laneflow/state"
    stamps_dir: str = ".laneflow/stamps"
    worktrees_dir: str = "worktrees"
    locks_dir: str = ".laneflow/locks"
    telemetry_path: str = ".laneflow/telemetry/gates.jsonl"
    session_path: str = ".laneflow/session.json"
    cache_dir: str = ".laneflow/cache"


class PushRetryConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    enabled: bool = True
    retries: int = Field(default=3, ge=1)
    min_delay_ms: int = Field(default=100, ge=0)
    max_delay_ms: int = Field(default=1000, ge=0)
    jitter: bool = True


class GitConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    remote: str = DEFAULT_REMOTE
    trunk: str = TRUNK_BRANCH
    # False means local-only mode: no fetch/push, integrate by ff-merge.
    require_remote: bool = True
    push_retry: PushRetryConfig = PushRetryConfig()


class LaneConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    name: str
    wip_limit: int = Field(default=1, ge=1)
    lock_policy: LockPolicy = "all"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Lane name must not be empty")
        return v.strip()


class GatesConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    # Gate name -> shell command. Gates with no command are treated as missing scripts.
    commands: Dict[str, str] = {}
    strict_scripts: bool = False
    timeout_seconds: int = Field(default=1800, ge=1)


class AgentPatternsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    registry_url: str = "https://laneflow.dev/registry/agent-patterns.json"
    timeout_seconds: float = Field(default=5.0, gt=0)
    patterns: List[str] = []
    override: Optional[List[str]] = None
    disable_registry: bool = False


class LaneflowConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    directories: DirectoriesConfig = DirectoriesConfig()
    git: GitConfig = GitConfig()
    lanes: List[LaneConfig] = []
    gates: GatesConfig = GatesConfig()
    agent_patterns: AgentPatternsConfig = AgentPatternsConfig()
    metadata_allowlist: List[str] = []

    def lane(self, name: str) -> Optional[LaneConfig]:
        """Return the lane config matching `name` (trimmed, case-insensitive)."""
        wanted = name.strip().lower()
        for lane in self.lanes:
            if lane.name.lower() == wanted:
                return lane
        return None
