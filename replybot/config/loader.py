"""Configuration file loading and saving."""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from replybot.config.schema import Config
from replybot.errors import ConfigError


def get_data_dir() -> Path:
    """Get the ReplyBot data directory (~/.replybot)."""
    path = Path.home() / ".replybot"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_data_dir() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from a JSON file.

    Missing files yield the defaults (environment overrides still apply).

    Args:
        config_path: Optional path, defaults to ~/.replybot/config.json.

    Returns:
        Validated Config.

    Raises:
        ConfigError: If the file is not valid JSON or fails validation.
    """
    path = config_path or get_config_path()

    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigError(f"Failed to read config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config {path}: expected a JSON object")

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write configuration as JSON and return the path written."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    return path
