"""
Logging setup for the ledger.

One named logger (normally ``intake_ledger``) gets the console and file
handlers; storage driver loggers are kept quiet unless the ledger itself runs
at WARNING or above.
"""

import logging
import sys
from pathlib import Path

from intake_ledger.utils.parameters import LoggingConfig

DRIVER_LOGGERS = ("aiosqlite", "psycopg", "psycopg.pool")


def _handlers_for(config: LoggingConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    return handlers


def setup_logging(config: LoggingConfig, logger_name: str | None = None) -> logging.Logger:
    """
    Attach handlers described by ``config`` to a logger.

    Calling it again replaces the previous handlers, so reloading configuration
    never duplicates output.

    Args:
        config: Logging configuration.
        logger_name: Logger to configure; the root logger when None.

    Returns:
        The configured logger.
    """
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    target = logging.getLogger(logger_name)
    target.setLevel(level)
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)
    for handler in _handlers_for(config):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        target.addHandler(handler)

    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    target.debug(f"Logging configured at {config.level.upper()} ({len(target.handlers)} handlers)")
    return target


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance by name."""
    return logging.getLogger(name)
