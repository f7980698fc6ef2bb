"""
Logging setup for Devfleet.

All loggers live under the "devfleet" namespace so one call configures
the whole package.
"""

import logging
from pathlib import Path
from typing import Optional

from .settings import get_log_path

ROOT_LOGGER = "devfleet"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the devfleet namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True,
    rich_console: bool = False,
) -> logging.Logger:
    """Configure the devfleet logger.

    Existing handlers are removed first so repeated calls don't stack.

    Args:
        level: Logging level for the package logger
        log_file: Optional file to append plain-text records to
        console: Whether to log to stderr
        rich_console: Use rich's handler for console output

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.setLevel(level)
    logger.propagate = False

    if console:
        if rich_console:
            from rich.logging import RichHandler
            handler: logging.Handler = RichHandler(show_path=False, markup=False)
            handler.setFormatter(logging.Formatter("%(message)s"))
        else:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger


def setup_cli_logging(verbose: bool = False) -> logging.Logger:
    """Logging for interactive commands.

    Warnings only by default; --verbose turns on debug output and a log file.
    """
    if verbose:
        setup_logging(level=logging.DEBUG, log_file=get_log_path(), rich_console=True)
    else:
        setup_logging(level=logging.WARNING, rich_console=True)
    return get_logger("cli")
