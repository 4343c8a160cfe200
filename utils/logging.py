"""Structured logging for the CogniClear decision engine.

Provides JSON output for production, a human-readable format for development,
and request context (request_id, user_id, decision_id) carried in ContextVars
so every log line emitted while serving a request can be correlated.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
decision_id_var: ContextVar[str | None] = ContextVar("decision_id", default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "decision_id": decision_id_var,
}

# LogRecord attributes that are never treated as "extra" fields
_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


def get_request_context() -> dict[str, str]:
    """Return the non-empty context values for the current task."""
    return {key: var.get() for key, var in _CONTEXT_VARS.items() if var.get()}


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    decision_id: str | None = None,
):
    """Set request context variables. None leaves a value untouched."""
    if request_id is not None:
        request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)
    if decision_id is not None:
        decision_id_var.set(decision_id)


def clear_request_context():
    """Clear all request context variables."""
    for var in _CONTEXT_VARS.values():
        var.set(None)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments.

    Output format:
    {
        "timestamp": "2026-01-29T12:34:56.789Z",
        "level": "INFO",
        "logger": "services.lifecycle",
        "message": "Decision analyzed",
        "request_id": "abc-123",
        "user_id": "user-456",
        "decision_id": "dec-789",
        "extra": {...}
    }
    """

    def __init__(self, service_name: str = "cogniclear-api"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(get_request_context())

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
            log_data["exception_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else None
            )

        # Fields passed via logger.info("msg", extra={"key": "value"})
        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable log formatter for development.

    Output format:
    2026-01-29 12:34:56.789 | INFO     | services.lifecycle | [req-abc1] Decision analyzed
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        level = record.levelname.ljust(8)
        message = record.getMessage()

        request_id = request_id_var.get()
        prefix = f"[{request_id[:8]}] " if request_id else ""

        formatted = f"{timestamp} | {level} | {record.name} | {prefix}{message}"
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service_name: str = "cogniclear-api",
):
    """Configure the root logger with structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format. If None, JSON unless DEBUG is set.
        service_name: Service name stamped on JSON records
    """
    if json_format is None:
        debug_mode = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
        json_format = not debug_mode

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(HumanReadableFormatter())
    root_logger.addHandler(handler)

    # Quiet noisy client libraries
    for noisy in ("httpx", "httpcore", "openai", "botocore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the module, configuring defaults on first use.

    Args:
        name: Module name (typically __name__)
    """
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        configure_logging()
    return logger


class LogContext:
    """Context manager that scopes request context to a block.

    Usage:
        async with LogContext(user_id="user-456", decision_id="dec-1"):
            logger.info("This log will include the context")
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | None = None,
        decision_id: str | None = None,
    ):
        self._values = {
            "request_id": request_id,
            "user_id": user_id,
            "decision_id": decision_id,
        }
        self._tokens: list = []

    def __enter__(self):
        for key, value in self._values.items():
            if value:
                var = _CONTEXT_VARS[key]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
