"""
Logging configuration for the Compound Risk service
JSON logs in production, human-readable logs in development, with the
request ID of the current HTTP request stamped onto every record
"""

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional

REQUEST_ID_HEADER = "X-Request-ID"

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "request_id", "request_tag", "taskName"}

# Chatty server loggers are capped at WARNING
_QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "httpx")


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind a request ID to the current context

    Args:
        request_id: Incoming ID; a UUID4 is generated when empty

    Returns:
        The bound request ID
    """
    request_id = request_id or str(uuid.uuid4())
    request_id_context.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return request_id_context.get()


class RequestIdFilter(logging.Filter):
    """Copy the current request ID onto each record"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including ``extra=`` fields"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            payload["request_id"] = request_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        )
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Single-line console format; the request ID is shown when bound"""

    def __init__(self):
        super().__init__(
            "%(asctime)s - %(name)s - %(levelname)s%(request_tag)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        request_id = getattr(record, "request_id", None)
        record.request_tag = f" - [request_id={request_id}]" if request_id else ""
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure the root logger for the service

    Replaces any existing root handlers with a stdout handler and, when
    ``log_file`` is given, a size-rotated file handler.

    Args:
        level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON instead of the console format
        log_file: Optional path of the rotated log file
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep
    """
    formatter: logging.Formatter = JSONFormatter() if json_format else HumanReadableFormatter()
    request_filter = RequestIdFilter()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        )

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(request_filter)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
