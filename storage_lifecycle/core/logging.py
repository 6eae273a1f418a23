"""
Structured logging configuration with JSON formatter.

This module provides:
- JSONFormatter for structured JSON logging
- ContextualLogger that binds fields (e.g. execution_id) to every record
- setup helpers used by LifecycleEngine at startup
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


# Attributes present on every LogRecord; anything else came in via ``extra``.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "message",
})


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Example output:
    {
        "timestamp": "2025-01-19T10:30:45.123456+00:00",
        "level": "INFO",
        "logger": "storage_lifecycle.storage.scanner",
        "message": "Lifecycle scan finished",
        "execution_id": "exec-1737282645123",
        "deleted": 12
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = self._serialize_value(value)

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    def _serialize_value(self, value: Any) -> Any:
        """
        Serialize value for JSON output.

        Args:
            value: Value passed through ``extra``

        Returns:
            JSON-serializable value
        """
        if isinstance(value, datetime):
            return value.isoformat()

        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                return f"<binary data: {len(value)} bytes>"

        if isinstance(value, BaseException):
            return {"type": type(value).__name__, "message": str(value)}

        if hasattr(value, "to_dict"):
            return value.to_dict()

        return value


class ContextualLogger:
    """
    Wrapper for logger that adds contextual information to all log messages.

    Usage:
        logger = ContextualLogger(logging.getLogger(__name__))
        logger.set_context(execution_id="exec-123", prefix="albums/")
        logger.info("Scanning page")  # includes execution_id and prefix
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.context: Dict[str, Any] = {}

    def set_context(self, **kwargs):
        """Set context fields that will be added to all log messages."""
        self.context.update(kwargs)

    def clear_context(self):
        """Clear all context fields."""
        self.context.clear()

    def _log_with_context(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.context)
        kwargs["extra"] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log_with_context(logging.ERROR, msg, *args, **kwargs)


def setup_json_logging(
    level: str = "INFO",
    logger_name: Optional[str] = None,
    json_format: bool = True,
) -> logging.Logger:
    """
    Setup logging for a logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of logger to configure (None for root logger)
        json_format: Emit JSON lines; plain text otherwise

    Returns:
        Configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    logger.addHandler(console_handler)

    # Named loggers do not propagate so records are not printed twice
    logger.propagate = logger_name is None

    return logger


def get_logger(name: str, with_context: bool = False) -> Union[logging.Logger, ContextualLogger]:
    """
    Get logger with optional contextual logging support.

    Args:
        name: Logger name (typically __name__)
        with_context: Whether to return ContextualLogger wrapper

    Returns:
        Logger instance (plain or contextual)
    """
    logger = logging.getLogger(name)

    if with_context:
        return ContextualLogger(logger)

    return logger
