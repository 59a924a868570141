"""DSS structured logging with JSON output and worker context.

Everything logs below the ``dss`` logger. Nothing is configured at import
time; the host process (or ``dss`` CLI) calls ``setup_logging`` once.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER = "dss"
LOG_FILE = "dss.log"

# Record attributes copied into JSON output when a caller sets them via ``extra``
WORKER_FIELDS = ("label", "project", "build_number", "command", "exit_code")

_context = threading.local()


def _current_context() -> dict[str, Any]:
    return getattr(_context, "fields", {})


class JsonFormatter(logging.Formatter):
    """One JSON document per record, for the rotating log file."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        log_data.update(_current_context())
        log_data.update({key: getattr(record, key) for key in WORKER_FIELDS if hasattr(record, key)})

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line records tagged with the worker label."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        label = getattr(record, "label", None) or _current_context().get("label")

        parts = [f"{color}{timestamp} {record.levelname:8s}{self.RESET}"]
        if label:
            parts.append(f"[{label}]")
        parts.append(record.getMessage())
        line = " ".join(parts)

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def set_worker_context(label: str | None = None, **kwargs: Any) -> None:
    """Tag every record logged from the current thread.

    Replaces any context previously set on this thread.

    Args:
        label: Worker label
        **kwargs: Additional fields, e.g. ``project`` or ``build_number``
    """
    fields: dict[str, Any] = {} if label is None else {"label": label}
    fields.update(kwargs)
    _context.fields = fields


def clear_worker_context() -> None:
    _context.fields = {}


def get_logger(name: str) -> logging.Logger:
    """Return ``dss.<name>``; names already below ``dss`` are used as-is."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "info",
    log_dir: str | Path | None = None,
    json_output: bool = True,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure the ``dss`` logger tree. Safe to call more than once.

    Args:
        level: Log level (debug, info, warn, error)
        log_dir: Directory for the JSON log file
        json_output: Whether to write JSON records to ``<log_dir>/dss.log``
        console_output: Whether to write colored records to stderr
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of rotated files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(ConsoleFormatter())
        handlers.append(console_handler)

    if log_dir and json_output:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path / LOG_FILE, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(JsonFormatter())
        handlers.append(file_handler)

    root_logger = logging.getLogger(ROOT_LOGGER)
    for old in root_logger.handlers:
        old.close()
    root_logger.handlers = []
    root_logger.setLevel(log_level)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    # The host process owns the root logger
    root_logger.propagate = False


class LoggerAdapter(logging.LoggerAdapter[logging.Logger]):
    """Adds a worker's identity to every record; explicit ``extra`` wins."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def get_worker_logger(label: str, project: str | None = None, build_number: int | None = None) -> LoggerAdapter:
    """Logger bound to one worker.

    Args:
        label: Worker label
        project: Owning project name
        build_number: Owning build number

    Returns:
        LoggerAdapter with worker context
    """
    extra: dict[str, Any] = {"label": label}
    if project is not None:
        extra["project"] = project
    if build_number is not None:
        extra["build_number"] = build_number
    return LoggerAdapter(get_logger("worker"), extra)
