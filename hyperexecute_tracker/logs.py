"""
Diagnostic logging for the tracker and the MCP server.

Everything goes to a rotating file: stdout is owned by the MCP stdio
transport and must stay clean.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from hyperexecute_tracker.config import LoggingConfig

LOGGER_NAMES = ("hyperexecute_tracker", "mcp_hyperexecute")

_FORMAT = "%(asctime)s | %(levelname)-5s | [%(name)s:%(lineno)d] %(message)s"


def setup_logging(config: LoggingConfig, root: str | Path) -> Path:
    """Attach a rotating file handler to the package loggers.

    Calling it again with the same file is a no-op.

    Returns:
        Absolute path of the log file
    """
    log_file = Path(config.file)
    if not log_file.is_absolute():
        log_file = Path(root) / log_file
    log_file = log_file.resolve()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.DEBUG

    for name in LOGGER_NAMES:
        pkg_logger = logging.getLogger(name)
        pkg_logger.setLevel(level)

        already = any(
            isinstance(h, RotatingFileHandler)
            and Path(h.baseFilename) == log_file
            for h in pkg_logger.handlers
        )
        if already:
            continue

        handler = RotatingFileHandler(
            log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(_FORMAT))
        pkg_logger.addHandler(handler)
        pkg_logger.propagate = False

    return log_file
