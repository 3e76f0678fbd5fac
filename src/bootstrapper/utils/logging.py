"""Rotating logger setup for the bootstrapper service."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from bootstrapper.config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def setup_logger(settings: Settings, name: str = "bootstrapper") -> logging.Logger:
    """Configure the service logger from settings.

    Component loggers (``bootstrapper.orchestrator``, ``bootstrapper.process``...)
    are children of ``name`` and inherit its handlers. Calling again with
    changed settings swaps the handlers instead of stacking new ones, so a
    level or file change takes effect without duplicated output.

    Args:
        settings: Source of ``log_file``, ``log_level``, rotation size,
            backup count and whether to echo to the console
        name: Root logger name for the service

    Returns:
        Configured logger instance
    """
    level = parse_level(settings.log_level)
    log_path = Path(settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_bootstrapper_owned", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            log_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
    ]
    if settings.log_console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._bootstrapper_owned = True
        logger.addHandler(handler)

    return logger


def parse_level(name: str) -> int:
    """Map a level name from configuration to its logging constant.

    Unknown names fall back to INFO.
    """
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO
