"""Observability helpers: logging, metrics, and health checks."""

from .logging_config import configure_logging, ensure_request_id
from .metrics import (
    increment_counter,
    observe_latency,
    record_event,
    get_metrics_snapshot,
    reset_metrics,
)
from .health import check_database_health

__all__ = [
    "configure_logging",
    "ensure_request_id",
    "increment_counter",
    "observe_latency",
    "record_event",
    "get_metrics_snapshot",
    "reset_metrics",
    "check_database_health",
]
