"""Prometheus metrics for idempotent function execution.

Metrics include:

- Invocation counters by outcome (new, replay, cache_hit, bypass, ...)
- Producer execution time histogram
- In-progress executions gauge
- Sweeper operation tracking

Examples:
    Recording a replay::

        from idempotent_functions.observability.metrics import record_invocation

        record_invocation("replay")

    Recording producer execution time::

        from idempotent_functions.observability.metrics import record_execution_time

        record_execution_time(execution_time_ms=150)
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: result (new, replay, cache_hit, bypass, in_progress,
# validation_error, producer_error, persistence_error)
invocations_total = Counter(
    "idempotency_invocations_total",
    "Total number of idempotent invocations by outcome",
    ["result"],
)

# Only new executions are observed, never replays
execution_time_seconds = Histogram(
    "idempotency_execution_time_seconds",
    "Producer execution time in seconds (new executions only)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 300, 900],
)

in_progress = Gauge(
    "idempotency_in_progress",
    "Number of producers currently executing under an idempotency lock",
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of sweeper runs performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by the sweeper",
)


def record_invocation(result: str) -> None:
    """Record the outcome of one idempotent invocation.

    Examples:
        >>> record_invocation("new")
        >>> record_invocation("in_progress")
    """
    invocations_total.labels(result=result).inc()


def record_execution_time(execution_time_ms: int) -> None:
    """Record producer execution time for a new execution."""
    execution_time_seconds.observe(execution_time_ms / 1000.0)


def increment_in_progress() -> None:
    in_progress.inc()


def decrement_in_progress() -> None:
    in_progress.dec()


def record_cleanup(records_removed: int) -> None:
    """Record a sweeper run.

    Args:
        records_removed: Number of expired records removed
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
