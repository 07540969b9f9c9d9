"""Configuration module: load and validate Converge settings."""

import os
from typing import Any, Dict, Optional
from pydantic import ValidationError
from ..utils.errors import ConfigError
from ..utils.logging import get_logger
from .manager import load_config
from .paths import get_project_config_path, get_user_config_path
from .settings import ExecutionSettings, LocalProviderSettings, ProviderSpec, RetrySettings, Settings

logger = get_logger("config")

ENV_STATE_DIR = "CONVERGE_STATE_DIR"
ENV_PARALLELISM = "CONVERGE_PARALLELISM"


def load_settings(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Load settings from config files and environment.

    Args:
        config_path: Optional explicit config file (highest file precedence)
        overrides: Values set by CLI flags, applied last (None values ignored)

    Returns:
        Validated Settings

    Raises:
        ConfigError: If config cannot be loaded or is invalid
    """
    config = load_config(config_path)

    state_dir = os.getenv(ENV_STATE_DIR)
    if state_dir:
        config["state_dir"] = state_dir

    parallelism = os.getenv(ENV_PARALLELISM)
    if parallelism:
        try:
            config.setdefault("execution", {})["max_parallelism"] = int(parallelism)
        except ValueError:
            raise ConfigError(f"{ENV_PARALLELISM} must be an integer, got '{parallelism}'")

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "max_parallelism":
            config.setdefault("execution", {})["max_parallelism"] = value
        else:
            config[key] = value

    try:
        settings = Settings.model_validate(config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")

    logger.debug(
        f"Settings: state_dir={settings.state_dir}, "
        f"max_parallelism={settings.execution.max_parallelism}"
    )
    return settings


__all__ = [
    "load_settings",
    "load_config",
    "get_user_config_path",
    "get_project_config_path",
    "Settings",
    "ExecutionSettings",
    "RetrySettings",
    "ProviderSpec",
    "LocalProviderSettings",
]
