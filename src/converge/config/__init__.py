"""Configuration module: load engine settings and resource type schemas."""

import os
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import ValidationError as PydanticValidationError
from ..utils.errors import ConfigError
from ..utils.logging import get_logger
from .manager import load_config, read_yaml, deep_merge
from .models import EngineConfig, ApplySettings, RetrySettings, StateSettings, ResourceTypeSchema
from .paths import get_defaults_path, get_user_config_path, get_project_config_path

logger = get_logger("config")

PARALLELISM_ENV_VAR = "CONVERGE_PARALLELISM"


def load_engine_config(config_path: Optional[str] = None, use_user_config: bool = True) -> EngineConfig:
    """
    Load engine configuration.

    Layers, lowest precedence first: packaged defaults.yaml, user config,
    project config, the explicit ``config_path``, then the
    CONVERGE_PARALLELISM environment variable.

    Args:
        config_path: Optional path to an explicit config YAML file
        use_user_config: Whether to merge user and project config files

    Returns:
        Validated EngineConfig

    Raises:
        ConfigError: If config cannot be loaded or is invalid
    """
    config: Dict[str, Any] = read_yaml(get_defaults_path())

    if use_user_config:
        deep_merge(config, load_config())

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        deep_merge(config, read_yaml(path))
        logger.info(f"Loaded configuration from {config_path}")

    parallelism = os.getenv(PARALLELISM_ENV_VAR)
    if parallelism:
        try:
            config.setdefault("apply", {})["parallelism"] = int(parallelism)
        except ValueError:
            raise ConfigError(f"{PARALLELISM_ENV_VAR} must be an integer, got '{parallelism}'")

    try:
        return EngineConfig.model_validate(config)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")


__all__ = [
    "EngineConfig",
    "ApplySettings",
    "RetrySettings",
    "StateSettings",
    "ResourceTypeSchema",
    "load_engine_config",
    "get_user_config_path",
    "get_project_config_path",
]
