"""
Centralized logging configuration.
Console output for operators, optional rotating JSON file for audit trails,
and a keyword-friendly wrapper so call sites can attach structured fields.
"""
import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "aggregator"


def _json_default(value: Any) -> Any:
    # Amounts travel as Decimal; keep their exact text in the log line.
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process_id": record.process,
            "thread": record.threadName,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        fields = getattr(record, "fields", None)
        if fields:
            entry.update(fields)
        return json.dumps(entry, ensure_ascii=False, default=_json_default)


class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger`` accepting keyword fields.

    ``None`` values are dropped so optional context does not clutter lines.
    ``exc_info`` is forwarded to the underlying logger untouched.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, exc_info: Any = None, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        clean = {k: v for k, v in fields.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"fields": clean})

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
) -> None:
    """
    Apply the logging configuration.

    Args:
        log_level: Level for service loggers (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path for JSON lines output (rotated at 10MB)
        enable_console: Whether to log human-readable lines to stdout
    """
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level,
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "level": log_level,
        }
    names = list(handlers)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER_NAME: {"level": log_level, "handlers": names, "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": names, "propagate": False},
            # SQL statement echo is noise outside debugging sessions
            "sqlalchemy.engine": {"level": "WARNING", "handlers": names, "propagate": False},
        },
        "root": {"level": log_level, "handlers": names},
    })


def get_logger(name: str) -> StructuredLogger:
    """Logger namespaced under the service root (``aggregator.<name>``)."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_business_event(event_type: str, details: Dict[str, Any], request_id: Optional[str] = None) -> None:
    """
    Audit line for a business event (conversion cached, scope flushed, cache cleared...).

    Args:
        event_type: Short snake_case event name
        details: Event specific fields
        request_id: Request ID for tracing, if the event came from a request
    """
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        request_id=request_id,
        **details,
    )


def log_performance(operation: str, duration_ms: float, additional_data: Optional[Dict[str, Any]] = None) -> None:
    """Timing line for an operation."""
    data: Dict[str, Any] = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)
    get_logger("performance").info(f"Performance: {operation}", operation=operation, **data)
