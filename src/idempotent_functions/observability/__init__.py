"""Observability utilities for idempotent function execution.

- Prometheus metrics for invocation outcomes and producer timings
- Structured logging with contextual information
"""

from idempotent_functions.observability.logging import configure_logging, get_logger
from idempotent_functions.observability.metrics import (
    record_cleanup,
    record_execution_time,
    record_invocation,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "record_cleanup",
    "record_execution_time",
    "record_invocation",
]
