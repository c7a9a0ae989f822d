"""Configuration loading from the environment and optional .env file."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from session_boundary.utils.config_validator import load_validated_config

logger = logging.getLogger(__name__)

TRUTHY = frozenset({"true", "1", "yes", "on"})
FALSY = frozenset({"false", "0", "no", "off"})


def load_env_file(path: Optional[Path] = None) -> bool:
    """
    Load a .env file into the process environment.

    Variables already set in the environment win over the file.

    Args:
        path: File to load (default: .env in the current directory)

    Returns:
        True if a file was found and loaded
    """
    env_file = path or Path.cwd() / ".env"
    if not env_file.exists():
        return False
    load_dotenv(dotenv_path=env_file, override=False)
    logger.debug(f"Loaded environment from {env_file}")
    return True


load_env_file()


def load_config() -> dict:
    """
    Load and validate configuration from environment variables.

    Returns:
        dict: Validated configuration with ``detection`` and ``logging`` sections

    Raises:
        ValueError: If configuration validation fails
    """
    return load_validated_config().to_dict()


def _raw(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def get_env_var(name: str, default: str = "") -> str:
    """Get environment variable, treating empty values as unset."""
    value = _raw(name)
    return default if value is None else value


def get_bool_env_var(name: str, default: bool = False) -> bool:
    """
    Get boolean environment variable.

    Raises:
        ValueError: If the value is not a recognized boolean spelling
    """
    value = _raw(name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in TRUTHY:
        return True
    if lowered in FALSY:
        return False
    raise ValueError(f"{name}={value!r} is not a boolean")


def get_int_env_var(name: str, default: int = 0) -> int:
    value = _raw(name)
    return default if value is None else int(value)


def get_float_env_var(name: str, default: float = 0.0) -> float:
    value = _raw(name)
    return default if value is None else float(value)
