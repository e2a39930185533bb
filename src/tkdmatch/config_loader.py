"""Configuration loader and validator."""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from tkdmatch.models import DEFAULT_TIE_BREAK, TieBreakCriterion

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = ".tkdmatch/tkdmatch.sqlite"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If file not found or invalid YAML
    """
    config_file = Path(path)

    if not config_file.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if config is None:
        raise ConfigError("Config file is empty")

    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping")

    return config


def _positive_int(config: dict[str, Any], key: str, default: int) -> int:
    value = config.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{key} must be a positive integer, got {value!r}")
    return value


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration values.

    Every key is optional and falls back to its default.

    Args:
        config: Configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If validation fails
    """
    validated = {}

    # SQLite database path
    database = config.get("database", DEFAULT_DATABASE)
    if not isinstance(database, str) or not database:
        raise ConfigError("database must be a non-empty path")
    validated["database"] = database

    # Log level (optional, default INFO)
    log_level = str(config.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{log_level}'")
    validated["log_level"] = log_level

    # First bracket match number (optional, default 101)
    validated["base_match_number"] = _positive_int(config, "base_match_number", 101)

    # Duplicate detection window for scoring actions (optional, default 1000 ms)
    window = config.get("duplicate_window_ms", 1000)
    if isinstance(window, bool) or not isinstance(window, int) or window < 0:
        raise ConfigError(f"duplicate_window_ms must be a non-negative integer, got {window!r}")
    validated["duplicate_window_ms"] = window

    # Default tie-break pipeline for new pools
    tie_break = config.get("tie_break", [c.value for c in DEFAULT_TIE_BREAK])
    if not isinstance(tie_break, list) or not tie_break:
        raise ConfigError("tie_break must be a non-empty list")
    try:
        validated["tie_break"] = [TieBreakCriterion(str(c).upper()) for c in tie_break]
    except ValueError as e:
        raise ConfigError(f"Unknown tie_break criterion: {e}")

    # Web server
    validated["host"] = str(config.get("host", "127.0.0.1"))
    port = config.get("port", 8000)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f"port must be between 1 and 65535, got {port!r}")
    validated["port"] = port

    unknown = set(config) - set(validated)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    return validated


def load_and_validate_config(path: Optional[str]) -> dict[str, Any]:
    """Load and validate configuration in one step.

    Args:
        path: Path to YAML config file, or None for all defaults

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If loading or validation fails
    """
    if path is None:
        return validate_config({})
    config = load_config(path)
    return validate_config(config)
