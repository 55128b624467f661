"""Logging configuration for the billing service.

Output goes to stdout and, when ``LOG_FILE`` is set, to a file as well.
The level comes from the ``LOG_LEVEL`` setting (default: INFO).
"""

import logging
import sys
from pathlib import Path

from app.core.config import settings

# Map string level names to logging constants
LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level(level_name: str | None = None) -> int:
    """Resolve a level name to a logging constant, falling back to INFO."""
    name = (level_name or settings.LOG_LEVEL or "INFO").upper()
    return LOG_LEVEL_MAP.get(name, logging.INFO)


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Level name overriding ``settings.LOG_LEVEL``
        log_file: File path overriding ``settings.LOG_FILE``; empty disables the file handler
    """
    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    log_level = get_log_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove any existing handlers to avoid duplicates on reload
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    file_path = settings.LOG_FILE if log_file is None else log_file
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # SQL echo is too noisy outside of DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
