"""Structured logging.

Loggers from ``get_logger`` accept structured fields as keyword arguments:

    from kindlesync.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Session authorized", session_id=session.id, user_id=user.id)

Fields, together with whatever ``bind_context`` attached to the current
request (request id, device, user), are emitted as JSON keys in production
and as ``key=value`` pairs on a terminal. Credential-like fields are masked
and bearer credentials are scrubbed from messages.
"""

import json
import logging
import re
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Iterator

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Request-scoped fields added to every record; replaced, never mutated
_log_context: ContextVar[dict[str, str]] = ContextVar("log_context", default={})

# Field names containing any of these are masked
SENSITIVE_FIELDS = ("secret", "token", "password", "authorization", "cookie")

# Masked on exact match only ("code" is a substring of "status_code")
SENSITIVE_EXACT_FIELDS = frozenset({"code", "state"})

_BEARER_IN_TEXT = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)


def _is_sensitive(key: str) -> bool:
    key = key.lower()
    return key in SENSITIVE_EXACT_FIELDS or any(s in key for s in SENSITIVE_FIELDS)


def _mask_value(value: Any) -> str:
    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "[REDACTED]"


def mask_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with credential-like values masked, recursively."""
    return {
        key: _mask_value(value) if _is_sensitive(key)
        else mask_sensitive(value) if isinstance(value, dict)
        else value
        for key, value in data.items()
    }


def scrub_message(message: str) -> str:
    return _BEARER_IN_TEXT.sub(r"\1[REDACTED]", message)


def _bindable(fields: dict[str, Any]) -> dict[str, str]:
    return {key: str(value) for key, value in fields.items() if value}


def bind_context(**fields: Any) -> None:
    """Attach fields to every record logged until the enclosing scope ends.

    The scope is the current request under ``RequestLoggingMiddleware``, or a
    ``log_context()`` block. Outside both, fields stay bound for the rest of
    the current context.
    """
    bound = _bindable(fields)
    if bound:
        _log_context.set({**_log_context.get(), **bound})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Scope for ``bind_context``; fields bound inside are dropped on exit."""
    token = _log_context.set({**_log_context.get(), **_bindable(fields)})
    try:
        yield
    finally:
        _log_context.reset(token)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = dict(_log_context.get())
    fields.update(mask_sensitive(getattr(record, "fields", {})))
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": scrub_message(record.getMessage()),
        }
        entry.update(_record_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.pathname}:{record.lineno}"

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        line = (
            f"{color}{timestamp} {record.levelname:<7}{self.RESET} "
            f"{record.name}: {scrub_message(record.getMessage())}"
        )
        if fields := _record_fields(record):
            line += "  [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """Logger whose methods take structured fields as keyword arguments."""

    def _log(
        self,
        level: int,
        msg: object,
        args,
        exc_info=None,
        extra: dict | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        if fields:
            extra = {**(extra or {}), "fields": fields}
        # One extra frame (this one) between the caller and logging
        super()._log(
            level, msg, args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module."""
    logging.setLoggerClass(StructuredLogger)
    try:
        return logging.getLogger(name)
    finally:
        logging.setLoggerClass(logging.Logger)


def setup_logging(json_output: bool = False, level: str = "INFO") -> None:
    """Send all logging to stdout in JSON or console format."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    for noisy in ("uvicorn.access", "httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, logs its outcome and echoes the id back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        context_token = _log_context.set({"request_id": request_id})
        logger = get_logger("kindlesync.http")
        started = time.monotonic()

        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "Unhandled error",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=_elapsed_ms(started),
                    exc_info=True,
                )
                raise

            # Path only: query strings carry session tokens and OAuth codes
            logger.info(
                f"{request.method} {request.url.path} {response.status_code}",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _log_context.reset(context_token)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


def log_operation(operation: str):
    """Log the outcome and duration of an async operation."""
    def decorator(func: Callable):
        logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation} failed",
                    operation=operation,
                    error=str(e),
                    duration_ms=_elapsed_ms(started),
                )
                raise
            logger.info(
                f"{operation} completed",
                operation=operation,
                duration_ms=_elapsed_ms(started),
            )
            return result

        return wrapper

    return decorator
