"""Structured logging bootstrap.

Configures the root logger so every ``logging.getLogger(__name__)`` call
across the service (and uvicorn) emits either:

* **JSON lines** (``json_output=True``, default) for log shippers.
* **Human-readable** (``json_output=False``) coloured lines for local
  development.

Each record is stamped with request context:

* ``queue``: the admission queue that admitted the running task
  (``general``, ``upload``, ...), empty outside admitted work.  Set by
  ``AdmissionQueue`` through the ``current_queue`` context variable, so
  anything a handler logs is attributed to its resource class.
* ``trace_id`` / ``span_id``: the active OpenTelemetry span, empty when
  tracing is off.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import TextIO

from opentelemetry import trace

from localhub.configs.system import LoggingConfig

current_queue: ContextVar[str] = ContextVar("current_queue", default="")

_JSON_FIELDS = (
    "asctime",
    "levelname",
    "name",
    "message",
    "queue",
    "trace_id",
    "span_id",
)
_DEV_FORMAT = "%(levelprefix)s %(asctime)s %(name)s  %(queue_tag)s%(message)s"
_DEV_DATEFMT = "%H:%M:%S"

_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
_QUIET_LOGGERS = ("httpx", "httpcore", "opentelemetry")


class RequestContextFilter(logging.Filter):
    """Adds ``queue``, ``queue_tag``, ``trace_id`` and ``span_id`` to records."""

    def filter(self, record: logging.LogRecord) -> bool:
        queue = current_queue.get()
        record.queue = queue  # type: ignore[attr-defined]
        record.queue_tag = f"[{queue}] " if queue else ""  # type: ignore[attr-defined]

        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            record.trace_id = format(ctx.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(ctx.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = ""  # type: ignore[attr-defined]
            record.span_id = ""  # type: ignore[attr-defined]
        return True


def build_formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        from pythonjsonlogger.json import JsonFormatter

        return JsonFormatter(
            fmt=" ".join(f"%({name})s" for name in _JSON_FIELDS),
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "logger",
            },
            defaults={"queue": "", "trace_id": "", "span_id": ""},
        )

    from uvicorn.logging import DefaultFormatter

    return DefaultFormatter(
        fmt=_DEV_FORMAT,
        datefmt=_DEV_DATEFMT,
        use_colors=None,
    )


def setup_logging(
    config: LoggingConfig | None = None,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Configure the root logger (call once at startup, before lifespan).

    Returns the installed handler; *stream* defaults to stdout.
    """
    if config is None:
        config = LoggingConfig()

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(build_formatter(config.json_output))

    root = logging.getLogger()
    root.setLevel(config.level.upper())
    root.handlers = [handler]

    for name in _UVICORN_LOGGERS:
        uvi = logging.getLogger(name)
        uvi.handlers = [handler]
        uvi.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
