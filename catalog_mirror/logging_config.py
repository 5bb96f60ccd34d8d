"""Logging configuration for the catalog mirror.

Console output for operators plus a daily JSONL file that keeps one
structured record per pipeline event (fetch failures, enrichments,
batch summaries) for later inspection.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from catalog_mirror.config import LOG_DIR

__all__ = [
    "setup_logging",
    "get_logger",
    "log_event",
    "ROOT_LOGGER",
]

ROOT_LOGGER = "catalog_mirror"


class JSONLFileHandler(logging.Handler):
    """Append structured log entries to ``<prefix>_<YYYYMMDD>.jsonl``."""

    def __init__(self, log_dir: Path, prefix: str = "mirror"):
        super().__init__()
        self.log_dir = log_dir
        self.prefix = prefix

    def _log_file(self) -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return self.log_dir / f"{self.prefix}_{datetime.now():%Y%m%d}.jsonl"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: Dict[str, Any] = {
                "timestamp": datetime.now().isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            event_type = getattr(record, "event_type", None)
            if event_type:
                entry["event_type"] = event_type
            entry.update(getattr(record, "event_data", None) or {})

            with open(self._log_file(), "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except Exception:
            self.handleError(record)


class ColoredConsoleHandler(logging.StreamHandler):
    """Console handler that colors the level name on a TTY."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if getattr(self.stream, "isatty", lambda: False)():
            color = self.COLORS.get(record.levelname, "")
            message = message.replace(
                record.levelname, f"{color}{record.levelname}{self.RESET}", 1
            )
        return message


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Configure the ``catalog_mirror`` logger tree.

    Args:
        level: Console logging level
        log_to_file: Whether to write the JSONL event log
        log_to_console: Whether to log to stdout
        log_dir: Custom log directory (default: LOG_DIR)

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    if log_to_console:
        console = ColoredConsoleHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
        )
        logger.addHandler(console)

    if log_to_file:
        file_handler = JSONLFileHandler(log_dir or LOG_DIR)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger below the package namespace (``fetcher`` -> ``catalog_mirror.fetcher``)."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def log_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = ROOT_LOGGER,
) -> None:
    """Log a structured pipeline event.

    ``data["message"]`` (if present) becomes the log message; every other
    key lands as a top-level field of the JSONL entry.
    """
    logger = get_logger(logger_name)
    message = data.get("message", event_type)
    logger.log(
        level,
        message,
        extra={
            "event_type": event_type,
            "event_data": {k: v for k, v in data.items() if k != "message"},
        },
    )
