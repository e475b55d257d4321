"""Logging setup for union-store processes.

Library modules only create loggers. The ``union-store`` command (or an
embedding application) installs handlers once through :func:`setup_logging`.
Console output goes to stderr because stdout carries object data for ``cat``.

Environment variables:
    UNIONSTORE_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL
        (falls back to LOG_LEVEL, then WARNING)
    UNIONSTORE_LOG_FORMAT: human, json or simple (default human)
    UNIONSTORE_LOG_FILE: also write JSON lines to this rotating file
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

LEVEL_ENV = "UNIONSTORE_LOG_LEVEL"
FORMAT_ENV = "UNIONSTORE_LOG_FORMAT"
FILE_ENV = "UNIONSTORE_LOG_FILE"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# SDK loggers that are noisy below WARNING unless debugging
CHATTY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "qiniu")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the fields a caller attached through ``extra=``."""
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra=`` fields merged in."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_context:
            entry.update(module=record.module, function=record.funcName, line=record.lineno)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_extra_fields(record))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Single-line console format; ``extra=`` fields are appended as ``k=v``."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False, include_context: bool = False):
        where = "%(name)s %(module)s.%(funcName)s:%(lineno)d" if include_context else "%(name)s"
        super().__init__(
            fmt=f"[%(levelname)s] %(asctime)s {where}: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra = _extra_fields(record)
        if extra:
            line += " [" + " ".join(f"{k}={v}" for k, v in extra.items()) + "]"
        if self.use_colors and record.levelname in self.COLORS:
            line = f"{self.COLORS[record.levelname]}{line}{self.RESET}"
        return line


def parse_log_level(level_name: str) -> int:
    """Map a level name to its number; unknown names mean WARNING."""
    return _LEVELS.get(level_name.strip().upper(), logging.WARNING)


def get_log_level_from_env() -> int:
    return parse_log_level(os.environ.get(LEVEL_ENV) or os.environ.get("LOG_LEVEL") or "WARNING")


def get_log_format_from_env() -> str:
    return os.environ.get(FORMAT_ENV, "human").lower()


def _console_formatter(
    format_type: str, use_colors: bool, include_context: bool
) -> logging.Formatter:
    if format_type == "json":
        return JSONFormatter(include_context=include_context)
    if format_type == "simple":
        return logging.Formatter("%(levelname)s: %(message)s")
    return HumanReadableFormatter(use_colors=use_colors, include_context=include_context)


def setup_logging(
    level: Optional[int] = None,
    format_type: Optional[str] = None,
    log_file: Optional[Path] = None,
    use_colors: bool = False,
    include_context: bool = False,
) -> None:
    """Replace the root logger's handlers with a stderr handler.

    Args:
        level: Root level (defaults to the environment, then WARNING)
        format_type: 'human', 'json' or 'simple' for the console
        log_file: Also write JSON records to this rotating file
        use_colors: Colour console output when stderr is a terminal
        include_context: Add module, function and line to each record
    """
    if level is None:
        level = get_log_level_from_env()
    if format_type is None:
        format_type = get_log_format_from_env()
    if log_file is None and os.environ.get(FILE_ENV):
        log_file = Path(os.environ[FILE_ENV])

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(_console_formatter(format_type, use_colors, include_context))
    root.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        rotating.setLevel(level)
        rotating.setFormatter(JSONFormatter(include_context=True))
        root.addHandler(rotating)

    sdk_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)


def get_logger(
    name: str, extra: Optional[Dict[str, Any]] = None
) -> Union[logging.Logger, logging.LoggerAdapter]:
    """Return a logger, wrapped in an adapter when ``extra`` context is given.

    Example:
        >>> log = get_logger(__name__, extra={"command": "cat"})
        >>> log.info("Reading s3:/datasets/sample.txt")
    """
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, extra) if extra else logger


def log_exception(logger: logging.Logger, message: str, exc: BaseException) -> None:
    """Log ``exc`` at ERROR with its traceback and type as structured fields."""
    logger.error(
        "%s: %s",
        message,
        exc,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
        },
    )
