"""Structured JSON logging for Homelab Insights

JSON output for log aggregation (Loki, ELK) in production, readable colored
lines for development. Context variables tag every log line emitted inside
an HTTP request or an insight generation cycle.

Usage:
    from homelab_insights.structured_logger import cycle_context, get_logger

    with cycle_context() as cycle_id:
        logger = get_logger("homelab_insights.engine")
        logger.info("Cycle started", analyzers=5)
        # {"timestamp": "...", "level": "INFO", "message": "Cycle started",
        #  "cycle_id": "1f3a9c2e", "extra": {"analyzers": 5}}
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union


_request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
_cycle_id: ContextVar[Optional[str]] = ContextVar('cycle_id', default=None)

# LogRecord attributes that are never treated as structured extras
_STANDARD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'message',
    'asctime', 'taskName',
}


def _context_fields() -> Dict[str, str]:
    context = {}
    request_id = _request_id.get()
    if request_id:
        context["request_id"] = request_id
    cycle_id = _cycle_id.get()
    if cycle_id:
        context["cycle_id"] = cycle_id
    return context


class JSONFormatter(logging.Formatter):
    """
    One JSON object per log line.

    Example output:
        {
            "timestamp": "2026-03-02T04:15:00.123000Z",
            "level": "WARNING",
            "logger": "homelab_insights.engine",
            "message": "Analyzer capacity failed",
            "cycle_id": "1f3a9c2e",
            "extra": {"analyzer": "capacity"}
        }
    """

    def __init__(self, include_context: bool = True, flatten_extra: bool = False):
        super().__init__()
        self.include_context = include_context
        self.flatten_extra = flatten_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if self.include_context:
            log_data.update(_context_fields())

        extra = {
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_FIELDS and not key.startswith('_')
        }
        if extra:
            if self.flatten_extra:
                log_data.update(extra)
            else:
                log_data["extra"] = extra

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter for development"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, include_context: bool = True):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.use_colors = use_colors and sys.stdout.isatty()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        if self.include_context:
            tags = [f"{key.split('_')[0]}:{value}" for key, value in _context_fields().items()]
            if tags:
                head, sep, tail = message.rpartition(' - ')
                if sep:
                    message = f"{head} [{', '.join(tags)}]{sep}{tail}"

        if self.use_colors:
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            message = f"{color}{message}{self.COLORS['RESET']}"

        return message


class StructuredLogger:
    """
    Wrapper around a standard logger that accepts structured fields.

    Example:
        logger = StructuredLogger("homelab_insights.engine")
        logger.info("Analyzer finished", analyzer="capacity", duration_ms=12.5)
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def _log(self, level: int, message: str, exc_info: bool = False, **fields):
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, message, exc_info=exc_info, extra=fields)

    def debug(self, message: str, **fields):
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self._log(logging.ERROR, message, **fields)

    def exception(self, message: str, **fields):
        self._log(logging.ERROR, message, exc_info=True, **fields)

    def log_request(self, method: str, path: str, status_code: int, duration_ms: float, **fields):
        """Log an HTTP request with standard fields"""
        level = logging.INFO if status_code < 400 else logging.WARNING
        if status_code >= 500:
            level = logging.ERROR

        self._log(
            level,
            f"{method} {path} - {status_code}",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            **fields
        )

    def log_cycle(self, state: str, insights: int, failures: Dict[str, str], duration_ms: float):
        """Log the outcome of one insight generation cycle"""
        self._log(
            logging.WARNING if failures else logging.INFO,
            f"Insight cycle {state}: {insights} insights, {len(failures)} failed analyzers",
            insights=insights,
            failed_analyzers=sorted(failures),
            duration_ms=round(duration_ms, 2),
        )


@contextmanager
def _bind(var: ContextVar, value: str) -> Iterator[str]:
    token = var.set(value)
    try:
        yield value
    finally:
        var.reset(token)


def request_context(request_id: Optional[str] = None):
    """Tag log lines emitted while handling one HTTP request"""
    return _bind(_request_id, request_id or str(uuid.uuid4())[:8])


def cycle_context(cycle_id: Optional[str] = None):
    """Tag log lines emitted during one insight generation cycle"""
    return _bind(_cycle_id, cycle_id or str(uuid.uuid4())[:8])


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return StructuredLogger(name)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
    include_context: bool = True
):
    """
    Configure root logging with structured formatters.

    Args:
        level: Logging level name or number
        json_format: JSON lines for production, colored console output otherwise
        include_context: Include request and cycle ids in log lines
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JSONFormatter(include_context=include_context))
    else:
        handler.setFormatter(ConsoleFormatter(include_context=include_context))

    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_current_context() -> Dict[str, Optional[str]]:
    """Current request and cycle ids, for debugging"""
    return {
        "request_id": _request_id.get(),
        "cycle_id": _cycle_id.get(),
    }
