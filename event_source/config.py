"""
Configuration loading and logging setup.

Settings come from three places, later ones winning:
1. Defaults declared on EventSourceSettings
2. config.yaml (project root by default)
3. EVENT_SOURCE_* environment variables, with a .env file loaded first

The library never touches loguru sinks on import; call configure_logging()
from the application entry point.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .core.dispatcher import HandlerErrorPolicy

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"

ENV_OVERRIDES = {
    "EVENT_SOURCE_LOG_LEVEL": "log_level",
    "EVENT_SOURCE_LOG_FILE": "log_file",
    "EVENT_SOURCE_HANDLER_ERROR_POLICY": "handler_error_policy",
}

_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when the configuration file is missing, unreadable or invalid."""


class EventSourceSettings(BaseModel):
    """
    Runtime settings for the event source.

    Attributes:
        log_level: Minimum loguru level for installed sinks
        log_file: Optional path of a rotating log file
        log_rotation: loguru rotation condition for the log file
        handler_error_policy: Treatment of subscriber handler exceptions

    Examples:
        >>> EventSourceSettings().handler_error_policy
        <HandlerErrorPolicy.PROPAGATE: 'propagate'>
        >>> EventSourceSettings(log_level="debug").log_level
        'DEBUG'
    """

    model_config = {"frozen": True, "extra": "forbid"}

    log_level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Rotating log file path; no file sink when unset"
    )
    log_rotation: str = Field(
        default="10 MB",
        description="loguru rotation condition"
    )
    handler_error_policy: HandlerErrorPolicy = Field(
        default=HandlerErrorPolicy.PROPAGATE,
        description="propagate or isolate handler exceptions"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> str:
        """Upper-case the level and make sure loguru knows it."""
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(
                f"Unknown log level '{value}'. Expected one of: {', '.join(_LOG_LEVELS)}"
            )
        return level


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading configuration file: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(
            f"Configuration file must contain a mapping, got {type(config).__name__}"
        )
    return config


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None,
) -> EventSourceSettings:
    """
    Load settings from config.yaml and the environment.

    Args:
        config_path: Explicit YAML file. When None, config.yaml in the
            project root is used if present and defaults otherwise.
        env_file: .env file to load. When None, .env in the project root is
            used if present. Variables already set in the environment are
            not overridden.

    Returns:
        EventSourceSettings: Validated settings

    Raises:
        ConfigError: If an explicit config_path does not exist, the file
            cannot be parsed, or a value fails validation
    """
    load_dotenv(env_file if env_file is not None else DEFAULT_ENV_FILE, override=False)

    if config_path is None:
        path = DEFAULT_CONFIG_PATH
        config = _read_config_file(path) if path.exists() else {}
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        config = _read_config_file(path)

    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            config[key] = value

    try:
        return EventSourceSettings.model_validate(config)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e


def configure_logging(settings: EventSourceSettings) -> None:
    """
    Replace loguru's sinks with ones matching the settings.

    A stderr sink is always installed at settings.log_level. A rotating
    file sink is added when settings.log_file is set.
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=settings.log_level,
            rotation=settings.log_rotation,
            encoding="utf-8",
        )

    logger.info(
        f"Logging configured at {settings.log_level}"
        + (f" (file: {settings.log_file})" if settings.log_file else "")
    )
