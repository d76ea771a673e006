"""Request logging, in-process metrics and the database health probe."""

from .health import check_database_health
from .logging_config import configure_logging, ensure_request_id
from .metrics import (
    MetricsRegistry,
    get_counter_value,
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
    record_event,
    reset_metrics,
)

__all__ = [
    "MetricsRegistry",
    "check_database_health",
    "configure_logging",
    "ensure_request_id",
    "get_counter_value",
    "get_metrics_snapshot",
    "increment_counter",
    "observe_latency",
    "record_event",
    "reset_metrics",
]
