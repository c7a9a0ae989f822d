"""Logging configuration."""

import logging
from pathlib import Path


def setup_logging(config: dict) -> logging.Logger:
    """
    Configure root logging for the detector.

    Args:
        config: Configuration dict as returned by load_config()

    Returns:
        The package logger
    """
    log_level = getattr(logging, config["logging"]["level"])
    log_format = config["logging"]["format"]

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = config["logging"].get("log_dir")
    if log_dir:
        log_path = Path(log_dir).expanduser()
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / "session_boundary.log"))

    logging.basicConfig(level=log_level, format=log_format, handlers=handlers)

    logger = logging.getLogger("session_boundary")
    logger.info(f"Logging initialized at {config['logging']['level']}")
    return logger
