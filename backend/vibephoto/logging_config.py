"""Structured JSON logging configuration for the VibePhoto backend.

Call ``configure_logging()`` once at process startup (API or CLI).  After
that, every ``logging.getLogger(__name__)`` call produces one JSON object per
line on stdout.

Two context variables are stamped onto every record:

* ``request_id`` -- bound by ``RequestIdMiddleware`` for the lifetime of an
  HTTP request (echoed back as ``X-Request-ID``).
* ``job_id`` -- bound by ``job_context()`` while the reconciler or sweeper is
  working on a single job, so webhook and poll paths for the same job can be
  correlated.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# ── Context variables ─────────────────────────────────────────────────────────
_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")


def get_request_id() -> str:
    """Return the request ID for the current async context (empty string if none)."""
    return _request_id_var.get()


def get_job_id() -> str:
    return _job_id_var.get()


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Bind ``job_id`` to every log record emitted inside the block."""
    token = _job_id_var.set(job_id)
    try:
        yield
    finally:
        _job_id_var.reset(token)


# ── JSON log formatter ────────────────────────────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects.

    Standard fields, the bound context ids, and anything passed through
    ``extra=`` end up at the top level of the payload.
    """

    _SKIP_ATTRS = frozenset(
        {
            "args",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "taskName",
            "thread",
            "threadName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid
        jid = get_job_id()
        if jid:
            payload["job_id"] = jid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._SKIP_ATTRS and not key.startswith("_"):
                payload[key] = value

        return json.dumps(payload, default=str)


# ── Public configuration entry-point ─────────────────────────────────────────


def configure_logging(level: str = "INFO") -> None:
    """Replace the root logger's handlers with a single JSON-to-stdout handler.

    Args:
        level: Logging level string, e.g. ``"INFO"`` or ``"DEBUG"``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # Provider polling is chatty at the transport level
    for noisy in ("httpx", "httpcore", "uvicorn.access", "botocore", "boto3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Structured JSON logging initialised",
        extra={"log_level": level.upper()},
    )


# ── Request ID middleware ─────────────────────────────────────────────────────


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach an ``X-Request-ID`` to every request/response pair and emit a
    structured access log line.

    An incoming header value is honoured so upstream proxies can propagate a
    trace ID; otherwise a fresh hex UUID is generated.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex

        token = _request_id_var.set(request_id)
        start = time.monotonic()

        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            _request_id_var.reset(token)

        response.headers[self._header_name] = request_id

        logging.getLogger("vibephoto.access").info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        return response
