"""
Logging configuration for fylo.

The library itself only creates module loggers under the "fylo" namespace.
Applications that want fylo's diagnostics on disk call setup_logging() once:
logs go to <log_dir>/fylo-YYYY-MM-DD.log (new file each day), optionally
mirrored to stderr.

Debug mode (FYLO_DEBUG_MODE) lowers the default level to DEBUG, so stream
lifecycle traces reach the file, and mirrors everything to stderr. Outside
debug mode the stderr mirror only carries warnings and errors.
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from fylo.config import get_settings


class FlushingHandler(logging.handlers.TimedRotatingFileHandler):
    """Handler that flushes after every emit for immediate visibility."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def _is_console_handler(handler: logging.Handler) -> bool:
    return (
        isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
        and handler.stream == sys.stderr
    )


def setup_logging(
    log_dir: Optional[Path] = None,
    level: Optional[int] = None,
    backup_count: int = 30,  # Keep 30 days of logs
    console: Optional[bool] = None,
) -> logging.Logger:
    """
    Set up file-based logging for fylo with daily rotation.

    Calling it again is safe: handlers that already exist are not added
    twice, but their levels follow the latest call.

    Args:
        log_dir: Directory for log files (default: FYLO_LOG_DIR or ./.fylo/logs)
        level: Logging level (default: DEBUG in debug mode, otherwise INFO)
        backup_count: Number of daily backup files to keep (default: 30 days)
        console: Also log to stderr (default: only in debug mode)

    Returns:
        Configured "fylo" logger
    """
    settings = get_settings()
    if log_dir is None:
        log_dir = settings.log_dir or Path.cwd() / ".fylo" / "logs"
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO
    if console is None:
        console = settings.debug
    console_level = level if settings.debug else max(level, logging.WARNING)

    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("fylo")
    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not any(isinstance(h, logging.handlers.TimedRotatingFileHandler) for h in logger.handlers):
        log_file = log_dir / f"fylo-{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = FlushingHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging initialized: {log_file} (level {logging.getLevelName(level)})")

    console_handlers = [h for h in logger.handlers if _is_console_handler(h)]
    for handler in console_handlers:
        handler.setLevel(console_level)

    if console and not console_handlers:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
        logger.debug("Console logging enabled")

    return logger
