"""Configuration loader: YAML config + .env overlay."""

import logging
import os
from pathlib import Path
from typing import Any

import pydantic
import yaml
from dotenv import load_dotenv

from gamecore.error_types import ConfigError

logger = logging.getLogger(__name__)

_config: dict[str, Any] | None = None


def load_config(config_path: str = "config.yaml", env_path: str = ".env") -> dict[str, Any]:
    """Load config.yaml and overlay environment variables from .env.

    The raw YAML is validated against ``gamecore.config_schema`` on first
    load and the validated dict (defaults filled in) is cached. A missing
    config file is not an error; every section has defaults.
    """
    global _config
    if _config is not None:
        return _config

    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / env_path)

    raw: dict[str, Any] = {}
    path = project_root / config_path
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.warning("Config file %s not found, using defaults", path)

    override_level = os.getenv("MARKET_YEARS_LOG_LEVEL")
    if override_level:
        raw.setdefault("logging", {})["level"] = override_level

    from gamecore.config_schema import validate_config_dict
    try:
        validated = validate_config_dict(raw)
    except pydantic.ValidationError as e:
        logger.error("Config validation failed: %s", e)
        raise ConfigError(str(e)) from e

    logger.info("Config validation passed")
    _config = validated.model_dump(mode="python")
    return _config


def reset_config() -> None:
    """Drop the cached config so the next ``load_config`` re-reads the file."""
    global _config
    _config = None


def get_section(name: str) -> dict[str, Any]:
    """Get one top-level config section."""
    return load_config().get(name, {})


def get_env(key: str) -> str:
    """Get an environment variable (reads from os.getenv, not cached in config)."""
    load_config()  # ensure .env is loaded
    return os.getenv(key, "")
