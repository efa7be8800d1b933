"""Logging setup for leadflow processes.

Two output formats: one JSON object per line for workers and scheduled runs,
and a short coloured line for a terminal. Jobs run concurrently on one event
loop, so the ids of the running job live in a ``ContextVar``;
``JobContextFilter`` copies them onto every record, including records from
module loggers that know nothing about jobs.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

# Fields shown inline by the console formatter, in this order
CONTEXT_FIELDS = ("job_id", "job_name", "lead_id", "query_id", "campaign_id", "company_id")

# LogRecord attributes that never count as extra fields
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

_job_context: ContextVar[Dict[str, Any]] = ContextVar("leadflow_job_context", default={})

# Library loggers that are only useful when debugging
QUIET_LOGGERS = (
    "urllib3",
    "requests",
    "openai",
    "httpx",
    "httpcore",
    "python_http_client",
    "apscheduler",
    "sqlalchemy.engine",
    "aiosqlite",
    "asyncio",
)


@contextmanager
def job_log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Attach fields to every record logged in the current task.

    Nested blocks add to the outer fields and restore them on exit.

    Example:
        >>> with job_log_context(job_id="j1", job_name="lead.enrich"):
        ...     logger.info("Enriching")  # record carries job_id and job_name
    """
    merged = {**_job_context.get(), **fields}
    token = _job_context.set(merged)
    try:
        yield merged
    finally:
        _job_context.reset(token)


def current_job_context() -> Dict[str, Any]:
    return dict(_job_context.get())


class JobContextFilter(logging.Filter):
    """Copies the current job context onto records that lack those fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _job_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through ``extra=`` or added by ``JobContextFilter``."""
    extras = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        extras[key] = value
    return extras


class StructuredFormatter(logging.Formatter):
    """Formatter that emits one JSON object per log record.

    Args:
        service_name: Value of the ``service`` field.
        include_source: Whether to add file, line and function.
    """

    def __init__(self, service_name: str = "leadflow", include_source: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "message": record.getMessage(),
        }
        if self.include_source:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extras = record_extras(record)
        if extras:
            log_data["extra"] = extras

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line formatter for terminals, with job and entity ids inline."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{timestamp} {level} {record.name}: {record.getMessage()}"
        ids = [
            f"{key}={getattr(record, key)}"
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        ]
        if ids:
            line += f" ({', '.join(ids)})"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    service_name: str = "leadflow",
) -> logging.Logger:
    """Configure the root logger for a CLI run or a worker.

    Args:
        level: Log level name. Defaults to ``LOG_LEVEL`` or INFO.
        structured: JSON output. Defaults to True unless ``APP_ENV=dev``.
        service_name: Service name written into JSON records.

    Returns:
        The ``leadflow`` package logger.
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    if structured is None:
        structured = os.environ.get("APP_ENV", "prod") != "dev"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(JobContextFilter())
    if structured:
        handler.setFormatter(StructuredFormatter(service_name=service_name))
    else:
        handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    quiet_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    logger = logging.getLogger("leadflow")
    logger.debug(
        "Logging initialized",
        extra={"log_level": logging.getLevelName(log_level), "structured": structured},
    )
    return logger
