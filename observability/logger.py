"""JSON logger helpers with trace and job context."""
from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_TRACE_ID = contextvars.ContextVar("trace_id", default=None)
_JOB_KEY = contextvars.ContextVar("job_key", default=None)
_CONFIGURED = False

_RESERVED_ATTRS = frozenset(
    {
        "args",
        "asctime",
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


class JsonFormatter(logging.Formatter):
    """Serialize log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        trace_id = getattr(record, "trace_id", None) or _TRACE_ID.get()
        if trace_id:
            payload["trace_id"] = trace_id
        job_key = getattr(record, "job", None) or _JOB_KEY.get()
        if job_key:
            payload["job"] = job_key
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_ATTRS:
                continue
            payload.setdefault(key, value)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    resolved = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    root.setLevel(getattr(logging, resolved, logging.INFO))
    # httpx logs every request at INFO; polling would flood the output.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def bind_trace_id(trace_id: str) -> None:
    _TRACE_ID.set(trace_id)


def clear_trace_id() -> None:
    _TRACE_ID.set(None)


def bind_job(subject_id: str, variant: str) -> None:
    _JOB_KEY.set(f"{subject_id}/{variant}")


def clear_job() -> None:
    _JOB_KEY.set(None)


def log_item(
    logger: logging.Logger,
    *,
    index: int,
    total: int,
    outcome: str,
    level: int = logging.INFO,
    **details: Any,
) -> None:
    """Record the outcome of a single scene attempt."""

    logger.log(
        level,
        "animation_item",
        extra={
            "item_index": index,
            "item_total": total,
            "item_outcome": outcome,
            "details": details or None,
        },
    )
