"""
Logging utilities for devfiles.

Provides console and JSON formatters, a one-call setup for the command line,
and helpers for logging with structured context fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from devfiles.common.security import sanitize_error_message, sanitize_url

DEFAULT_CONSOLE_LEVEL = logging.INFO

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiohttp",
    "asyncio",
]


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs to remove credentials before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "version",
        "install_dir",
        "state",
        "url",
        "proxy",
        "http_status",
        "arch",
        "file",
        "checksum",
        "expected",
        "extracted",
        "install_version",
        "required_version",
        "error_category",
        "error_message",
        "duration_ms",
    ]

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["url", "proxy"]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file_location"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                if field in self.URL_FIELDS and isinstance(value, str):
                    value = sanitize_url(value)
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Appends the arch or file being processed when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]
        prefix = " - ".join(parts)
        message = record.getMessage()

        arch = getattr(record, "arch", None)
        if arch:
            message = f"[{arch}] {message}"

        url = getattr(record, "url", None)
        if url and record.levelno <= logging.DEBUG:
            message = f"{message} ({sanitize_url(url)})"

        line = f"{prefix} - {message}"
        if record.exc_info and record.levelno >= logging.ERROR:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    name: str = "devfiles",
    level: int = DEFAULT_CONSOLE_LEVEL,
    json_format: bool = False,
    suppress_noisy: bool = True,
) -> logging.Logger:
    """
    Configure the root logger with a single stderr handler.

    Args:
        name: Logger name to return
        level: Handler level (default: INFO)
        json_format: Emit JSON lines instead of console text
        suppress_noisy: Quiet down HTTP client and event loop loggers

    Returns:
        Configured logger instance
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handler filters

    # Remove existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(f"Logging initialized: level={logging.getLevelName(level)}, json={json_format}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (url, arch, http_status, etc.)

    Example:
        log_with_context(
            logger, logging.DEBUG, "content checksum",
            file="node-v20.0.0-headers.tar.gz",
            checksum=digest,
        )
    """
    logger.log(level, msg, extra=kwargs)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = False,
    error_category: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from DevfilesError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: False)
        error_category: Override the category taken from the exception
        **kwargs: Additional context fields
    """
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        error_category = cat.value if hasattr(cat, "value") else str(cat)
    kwargs["error_category"] = error_category
    kwargs["error_message"] = sanitize_error_message(str(exc))

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)
