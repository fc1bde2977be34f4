"""Project configuration for Laneflow (`.laneflow.yaml`)."""

from laneflow.config.loader import load_config, load_project_config
from laneflow.config.schema import (
    AgentPatternsConfig,
    DirectoriesConfig,
    GatesConfig,
    GitConfig,
    LaneConfig,
    LaneflowConfig,
    PushRetryConfig,
)

__all__ = [
    "AgentPatternsConfig",
    "DirectoriesConfig",
    "GatesConfig",
    "GitConfig",
    "LaneConfig",
    "LaneflowConfig",
    "PushRetryConfig",
    "load_config",
    "load_project_config",
]
