"""Logging setup for TaskWise.

Everything goes to a size-rotated file under ``~/.taskwise/logs``. The
command-line entry point can additionally mirror records to the terminal
through rich. Modules never configure logging themselves; they only call
``get_logger(__name__)``.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_DIR = Path.home() / ".taskwise" / "logs"
LOG_FILE = LOG_DIR / "taskwise.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

LOG_LEVEL_ENV = "TASKWISE_LOG_LEVEL"


def _resolve_level(log_level: Optional[str]) -> tuple:
    """Turn a level name into (name, number); unknown names mean INFO."""
    name = (log_level or os.getenv(LOG_LEVEL_ENV, "INFO")).upper()
    number = getattr(logging, name, None)
    if not isinstance(number, int):
        return "INFO", logging.INFO
    return name, number


def setup_logging(
    log_level: Optional[str] = None,
    use_console_handler: bool = False
) -> None:
    """Configure the root logger for a TaskWise process.

    Safe to call more than once: previously installed root handlers are
    replaced, not stacked.

    Args:
        log_level: Level name such as "DEBUG". When omitted, TASKWISE_LOG_LEVEL
            is used, and INFO when that is unset or not a level name.
        use_console_handler: Also echo records to the terminal with rich's
            RichHandler.
    """
    level_name, level = _resolve_level(log_level)

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handlers = [file_handler]

    if use_console_handler:
        from rich.logging import RichHandler

        handlers.append(RichHandler(show_path=False, rich_tracebacks=True))

    for handler in handlers:
        handler.setLevel(level)
        root_logger.addHandler(handler)

    logging.getLogger(__name__).info(
        f"Logging initialized: level={level_name}, file={LOG_FILE}, console={use_console_handler}"
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)
