"""Observability helpers."""

from .logger import (  # noqa: F401
    bind_job,
    bind_trace_id,
    clear_job,
    clear_trace_id,
    configure_logging,
    get_logger,
    log_item,
)

__all__ = [
    "bind_job",
    "bind_trace_id",
    "clear_job",
    "clear_trace_id",
    "configure_logging",
    "get_logger",
    "log_item",
]
