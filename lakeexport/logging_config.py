"""Console and file logging for exports and the ``lake-export`` CLI.

Records go to stdout in one of three layouts (``human``, ``json``,
``simple``). A log file, when configured, always receives JSON lines.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

LEVEL_ENV_VARS = ("LAKE_EXPORT_LOG_LEVEL", "LOG_LEVEL")
FORMAT_ENV_VAR = "LAKE_EXPORT_LOG_FORMAT"
FILE_ENV_VAR = "LAKE_EXPORT_LOG_FILE"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_LEVELS: Dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Attributes every LogRecord carries; anything else arrived through extra=
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

# Held at WARNING whatever the root level
_QUIET_LOGGERS = ("sqlalchemy.engine",)


def _utc_timestamp(created: float) -> str:
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields become top-level keys."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_context:
            payload.update(module=record.module, function=record.funcName, line=record.lineno)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update((key, value) for key, value in record.__dict__.items() if key not in _STANDARD_ATTRS)
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    _PLAIN = "[%(levelname)s] %(asctime)s - %(name)s - %(message)s"
    _WITH_CONTEXT = "[%(levelname)s] %(asctime)s - %(name)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
    _LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    _RESET = "\033[0m"

    def __init__(self, use_colors: bool = False, include_context: bool = False):
        super().__init__(
            fmt=self._WITH_CONTEXT if include_context else self._PLAIN,
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        # Colors only when stdout is a terminal
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = self._LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{text}{self._RESET}" if color else text


def get_log_level_from_env() -> int:
    """Level named by the first of ``LEVEL_ENV_VARS`` that is set; INFO otherwise."""
    for env_var in LEVEL_ENV_VARS:
        name = os.environ.get(env_var)
        if name:
            return _LEVELS.get(name.strip().upper(), logging.INFO)
    return logging.INFO


def get_log_format_from_env() -> str:
    return os.environ.get(FORMAT_ENV_VAR, "human").lower()


def _console_formatter(format_type: str, use_colors: bool, include_context: bool) -> logging.Formatter:
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
    """Replace the root logger's handlers.

    Arguments left as ``None`` are read from the environment: the level from
    ``LEVEL_ENV_VARS``, the console layout from ``FORMAT_ENV_VAR`` and the
    log file from ``FILE_ENV_VAR``. The file rotates at
    ``LOG_FILE_MAX_BYTES``.
    """
    if level is None:
        level = get_log_level_from_env()
    format_type = format_type or get_log_format_from_env()
    if log_file is None and os.environ.get(FILE_ENV_VAR):
        log_file = Path(os.environ[FILE_ENV_VAR])

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_console_formatter(format_type, use_colors, include_context))
    handlers: List[logging.Handler] = [console]

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        rotating.setFormatter(JSONFormatter(include_context=True))
        handlers.append(rotating)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_performance(logger: logging.Logger, operation: str, duration_seconds: float, **metrics: Any) -> None:
    logger.info(
        f"Performance: {operation} completed in {duration_seconds:.2f}s",
        extra={"operation": operation, "duration_seconds": duration_seconds, **metrics},
    )
