"""Logging setup shared by every ftadmit module.

All module loggers hang below one package logger named ``ftadmit``. That
logger owns the only handler; children just inherit its level.
"""

import logging
import sys
from typing import Optional

#: Name of the package-level logger every module logger descends from.
ROOT_LOGGER_NAME = "ftadmit"

#: Default record layout for console output.
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_ROOT_LOGGER_CONFIGURED = False


def setup_root_logger(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
) -> None:
    """Attach a single handler to the package logger.

    Repeated calls are ignored until :func:`reset_logging` runs.

    Args:
        level: Level for the package logger.
        format_string: Record format. Defaults to :data:`DEFAULT_FORMAT`.
        handler: Handler to install. Defaults to a stdout stream handler.
    """
    global _ROOT_LOGGER_CONFIGURED

    if _ROOT_LOGGER_CONFIGURED:
        return

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    root_logger.addHandler(handler)

    # pytest's caplog listens on the stdlib root logger
    root_logger.propagate = True

    _ROOT_LOGGER_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger that inherits the package configuration.

    Args:
        name: Logger name, normally ``__name__`` of the caller.

    Returns:
        Logger whose level defers to the ``ftadmit`` logger.
    """
    setup_root_logger()
    logger = logging.getLogger(name)
    logger.setLevel(logging.NOTSET)
    return logger


def set_global_log_level(level: int) -> None:
    """Change the level of the package logger and its handlers.

    Args:
        level: New logging level, e.g. ``logging.DEBUG``.
    """
    setup_root_logger()
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def level_from_flags(verbose: bool = False, quiet: bool = False) -> int:
    """Map command-line verbosity flags to a logging level.

    ``verbose`` wins when both flags are set.
    """
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def enable_debug_logging() -> None:
    """Switch the package to DEBUG output."""
    set_global_log_level(logging.DEBUG)


def disable_debug_logging() -> None:
    """Return the package to INFO output."""
    set_global_log_level(logging.INFO)


def reset_logging() -> None:
    """Drop the package handler so the next call reconfigures it (tests only)."""
    global _ROOT_LOGGER_CONFIGURED
    _ROOT_LOGGER_CONFIGURED = False

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.NOTSET)


setup_root_logger()
