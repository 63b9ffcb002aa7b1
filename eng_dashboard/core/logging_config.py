"""
Logging setup for the dashboard core.

Console output is plain text; an optional log file gets one JSON object per
line. Structured fields reach both outputs two ways: keyword arguments to
log_with_context(), and the ``extra=`` keys the collectors and the warmer pass
(cache_key, user_count, error_type, context, ...).

The level comes from the ``level`` argument, else ENG_DASHBOARD_LOG_LEVEL,
else INFO.

Usage:
    from eng_dashboard.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Loaded users from API", extra={"source": url, "user_count": 42})
"""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOG_LEVEL_ENV = "ENG_DASHBOARD_LOG_LEVEL"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# One INFO line per upstream request otherwise
QUIET_LOGGERS = ("httpx", "httpcore", "hpack")

# Attributes every LogRecord carries; anything else arrived through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
    "extra_fields",
}


def structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Dashboard context attached to ``record``, in insertion order."""
    fields = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
    fields.update(getattr(record, "extra_fields", None) or {})
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per record with the structured fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        data.update(structured_fields(record))
        return json.dumps(data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable formatter.

    Structured fields follow the message as ``key=value`` pairs, so a warm
    run reads like ``Batch 2/3 complete | batch=2 total_batches=3``.
    """

    def __init__(self) -> None:
        super().__init__(fmt=CONSOLE_FORMAT, datefmt=CONSOLE_DATE_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = structured_fields(record)
        if not fields:
            return line
        return line + " | " + " ".join(f"{key}={value}" for key, value in fields.items())


def setup_logging(
    level: str | None = None,
    log_file: Path | None = None,
    json_output: bool = False,
) -> None:
    """
    Configure the root logger for the dashboard process.

    Args:
        level: Log level name; falls back to ENG_DASHBOARD_LOG_LEVEL, then INFO
        log_file: Optional file that receives JSON lines
        json_output: Write JSON to the console as well

    Example:
        # Server process
        setup_logging(log_file=Path(".tmp/logs/dashboard.log"), json_output=True)
    """
    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    """
    Log ``message`` with keyword context fields.

    Example:
        log_with_context(logger, "debug", "Batch 2/3 complete", batch=2, total_batches=3, duration_ms=1834)
    """
    getattr(logger, level.lower())(message, extra={"extra_fields": context})


if not logging.getLogger().handlers:
    setup_logging()
