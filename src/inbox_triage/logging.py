"""Logging setup shared by the watcher and the review CLI.

Every module logs through a child of the ``inbox_triage`` logger, so one call
to setup_logging() at an entry point routes all components to the same file.
"""

import logging
import sys
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / "inbox-triage" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PACKAGE_LOGGER = "inbox_triage"


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Route inbox-triage log records to <log_dir>/<name>.log and optionally stderr.

    Calling it again only adjusts the level; handlers are installed once per
    process.

    Args:
        name: Entry point name, used as the log file stem
        log_dir: Directory for log files (defaults to ~/inbox-triage/logs/)
        level: Logging level (defaults to INFO)
        console: Also write to stderr (the review CLI turns this off)

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    _attach(logger, logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8"), level)

    if console:
        _attach(logger, logging.StreamHandler(sys.stderr), level)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Logger for one component, e.g. get_logger("batcher") -> inbox_triage.batcher."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{component}")
