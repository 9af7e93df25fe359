"""
Nodebench Hub - Logging Configuration
=====================================

Structured JSON logging with request-scoped context propagation.

Context carried on every record (when set):
- correlation_id: one per HTTP request (taken from X-Request-ID when present)
- run_id: the agent run being executed
- agent: the agent currently handling the request
- user_id: the signed-in user

Usage:
    from hub.observability import setup_logging, OperationContext

    setup_logging(level="INFO", json_format=True)
    logger = logging.getLogger(__name__)

    with OperationContext(correlation_id="req-123", user_id="u-1"):
        logger.info("Processing started")
"""

import contextvars
import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

CONTEXT_FIELDS = ("correlation_id", "run_id", "agent", "user_id")

_context_vars: dict[str, contextvars.ContextVar] = {
    name: contextvars.ContextVar(f"nodebench_{name}", default=None) for name in CONTEXT_FIELDS
}
_extra_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "nodebench_extra_context", default=None
)

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine", "uvicorn.access")


def get_correlation_id() -> str | None:
    return _context_vars["correlation_id"].get()


def get_run_id() -> str | None:
    return _context_vars["run_id"].get()


def get_agent() -> str | None:
    return _context_vars["agent"].get()


def get_user_id() -> str | None:
    return _context_vars["user_id"].get()


def generate_correlation_id() -> str:
    return f"req-{uuid4().hex[:12]}"


def current_context() -> dict[str, Any]:
    """Snapshot of the bound ids, omitting the unset ones."""
    bound = {name: var.get() for name, var in _context_vars.items() if var.get()}
    extra = _extra_context.get()
    if extra:
        bound["context"] = dict(extra)
    return bound


class OperationContext:
    """
    Bind request/run/agent/user ids for the enclosed block.

    Nested contexts override only the ids they are given; everything is
    restored on exit. Unknown keyword arguments are merged into a free-form
    ``context`` mapping.
    """

    def __init__(self, correlation_id: str | None = None, run_id: str | None = None,
                 agent: str | None = None, user_id: str | None = None,
                 auto_generate_correlation: bool = False, **extra_context):
        self.values = {"correlation_id": correlation_id, "run_id": run_id, "agent": agent, "user_id": user_id}
        self.auto_generate_correlation = auto_generate_correlation
        self.extra_context = extra_context
        self._tokens: list[contextvars.Token] = []

    def __enter__(self):
        values = dict(self.values)
        if not values["correlation_id"] and self.auto_generate_correlation and not get_correlation_id():
            values["correlation_id"] = generate_correlation_id()

        for name, value in values.items():
            if value:
                self._tokens.append(_context_vars[name].set(value))
        if self.extra_context:
            merged = {**(_extra_context.get() or {}), **self.extra_context}
            self._tokens.append(_extra_context.set(merged))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            token = self._tokens.pop()
            token.var.reset(token)
        return False


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_location: bool = True, extra_fields: dict[str, Any] | None = None):
        super().__init__()
        self.include_location = include_location
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_location:
            payload["location"] = f"{record.filename}:{record.lineno} in {record.funcName}"
        payload.update(current_context())

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        data = getattr(record, "extra_data", None)
        if data is not None:
            payload["data"] = data
        payload.update(self.extra_fields)
        return json.dumps(payload, default=str)


class ContextFormatter(logging.Formatter):
    """Plain-text formatter that prefixes records with the bound ids."""

    def __init__(self, fmt: str | None = None, datefmt: str = "%H:%M:%S"):
        super().__init__(fmt=fmt or "%(asctime)s %(levelname)-7s %(context)s%(name)s: %(message)s", datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        prefix = []
        if get_correlation_id():
            prefix.append(f"[{get_correlation_id()}]")
        if get_run_id():
            prefix.append(f"[run:{get_run_id()[:8]}]")
        if get_agent():
            prefix.append(f"[{get_agent()}]")
        record.context = "".join(f"{part} " for part in prefix)
        return super().format(record)


def setup_logging(level: str = "INFO", json_format: bool = False,
                  extra_fields: dict[str, Any] | None = None) -> None:
    """Replace the root handlers with a single stdout handler."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(extra_fields=extra_fields) if json_format else ContextFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class OperationLogger:
    """Log start, success and failure of a named operation inside its own context."""

    def __init__(self, logger: logging.Logger, operation: str, run_id: str | None = None,
                 agent: str | None = None, **context_data):
        self.logger = logger
        self.operation = operation
        self.context = OperationContext(run_id=run_id, agent=agent, auto_generate_correlation=True, **context_data)
        self.started_at: float | None = None

    def _event(self, event: str, **data) -> dict:
        return {"extra_data": {"event": event, "operation": self.operation, **data}}

    @property
    def duration_ms(self) -> int:
        if self.started_at is None:
            return 0
        return int((time.perf_counter() - self.started_at) * 1000)

    def __enter__(self):
        self.context.__enter__()
        self.started_at = time.perf_counter()
        self.logger.info(f"{self.operation} started", extra=self._event("operation_start"))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.logger.info(f"{self.operation} finished in {self.duration_ms}ms",
                                 extra=self._event("operation_success", duration_ms=self.duration_ms))
            else:
                self.logger.error(f"{self.operation} failed after {self.duration_ms}ms: {exc_val}",
                                  exc_info=(exc_type, exc_val, exc_tb),
                                  extra=self._event("operation_failed", duration_ms=self.duration_ms))
        finally:
            self.context.__exit__(exc_type, exc_val, exc_tb)
        return False


def log_exception(logger: logging.Logger, message: str, exception: BaseException | None = None, **data) -> None:
    """Log ``message`` at ERROR with the exception's traceback and optional data."""
    exc_info = (type(exception), exception, exception.__traceback__) if exception is not None else True
    logger.error(message, exc_info=exc_info, extra={"extra_data": data} if data else None)
