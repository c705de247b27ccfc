"""Loading of the processing configuration from files and environment."""

import os
from pathlib import Path
from typing import Any, Optional, Type, Union

from pydantic import ValidationError
from pydantic_settings import SettingsConfigDict, SettingsError

from .exceptions import ConfigurationError
from .logging_config import get_logger
from .models import ENV_PREFIX, ProcessingConfig

CONFIG_PATH_ENV = ENV_PREFIX + "CONFIG"


def _with_settings_file(path: Path) -> Type[ProcessingConfig]:
    class FileBackedConfig(ProcessingConfig):
        model_config = SettingsConfigDict(json_file=path)

    return FileBackedConfig


def load_config(
    path: Optional[Union[str, Path]] = None, **overrides: Any
) -> ProcessingConfig:
    """
    Build a ProcessingConfig from a settings file, the environment and overrides.

    Precedence, highest first: keyword overrides, ``IMAGE_STORE_<FIELD>``
    environment variables, the JSON settings file, built-in defaults. The
    settings file is taken from ``path`` or the ``IMAGE_STORE_CONFIG``
    environment variable. Overrides that are None are ignored.

    Numeric values are parsed as plain integers; a missing or unparseable
    ``max_file_size`` falls back to the 2 MiB default.

    Raises:
        ConfigurationError: If the settings file is unreadable or a value is invalid
    """
    logger = get_logger("config")

    config_cls = ProcessingConfig
    settings_path = path or os.environ.get(CONFIG_PATH_ENV)
    if settings_path:
        settings_path = Path(settings_path)
        if not settings_path.is_file():
            raise ConfigurationError(f"Settings file not found: {settings_path}")
        config_cls = _with_settings_file(settings_path)
        logger.debug(f"Loading settings file {settings_path}")

    try:
        return config_cls(**{k: v for k, v in overrides.items() if v is not None})
    except (ValidationError, SettingsError) as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
