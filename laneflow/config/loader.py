from pathlib import Path
from typing import Optional, Type, TypeVar

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from laneflow.config.schema import LaneflowConfig
from laneflow.constants import CONFIG_FILENAME
from laneflow.logging_config import get_logger
from laneflow.utils import expand_env_vars

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if hasattr(model, "model_extra") and model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)
        elif isinstance(field_value, list):
            for index, value in enumerate(field_value):
                if isinstance(value, BaseModel):
                    _warn_unknown_keys(value, f"{path}.{field_name}[{index}]", config_path)


def load_config(path: Path, model_class: Type[T]) -> T:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the .laneflow.yaml file.
        model_class: The Pydantic model class to use for validation.

    Returns:
        The validated configuration model.
    """
    if not path.exists():
        return model_class()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return model_class()

    expanded = expand_env_vars(raw)
    model = model_class.model_validate(expanded)
    _warn_unknown_keys(model, "root", path)
    return model


def load_project_config(repo_root: Path, path: Optional[Path] = None) -> LaneflowConfig:
    """Load project configuration from the repository root.

    A `.env` next to the config is loaded first (without overriding the
    process environment) so `${VAR}` references can resolve from it.
    """
    load_dotenv(repo_root / ".env", override=False)
    return load_config(path or repo_root / CONFIG_FILENAME, LaneflowConfig)
