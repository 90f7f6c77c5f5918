"""Structured logging for idempotent function execution.

Everything here logs through structlog. Event names are dotted and carry the
idempotency key (and the scope where one is known), never the payload or the
stored result.

Events emitted by the state machine (``idempotency.*``):

- ``key_missing``: the key expression selected nothing; the call runs
  without idempotency (warning)
- ``claimed``: a new INPROGRESS record was written for the key (debug)
- ``put_conflict``: the conditional put lost against an existing record
  (debug)
- ``in_progress``: another caller holds a live claim, the call is rejected
  (info)
- ``stale_record``: an expired record was found and will be taken over
  (info)
- ``takeover_lost``: a concurrent caller replaced the stale record first
  (info)
- ``producer_failed``: the wrapped function raised and the claim is being
  released (info)
- ``delete_failed``: releasing the claim after a failure hit a store error
  (error)
- ``update_failed``: saving the completed result hit a store error (error)
- ``completed``: the result was persisted as COMPLETED (debug)
- ``cache_hit``: the local cache answered without a store read (debug)
- ``validation_failed``: the stored payload hash differs from the call's
  (warning)
- ``replay``: a stored result was returned instead of running the function
  (info)
- ``store_error``: the DynamoDB backend translated a client error (error)

Events emitted by the background sweeper (``cleanup.*``): ``started``,
``completed``, ``failed``, ``stopped``, ``stop_timeout``, ``cancelled``.

Examples:
    Configure once at process start::

        from idempotent_functions.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    A replay then renders as::

        {
            "event": "idempotency.replay",
            "key": "orders.create#5d41...",
            "level": "info",
            "timestamp": "2024-01-01T00:00:00.000000Z"
        }
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    This should be called once at cold start to set up the logging pipeline.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list[object] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        A structlog logger instance
    """
    return structlog.get_logger(name)
