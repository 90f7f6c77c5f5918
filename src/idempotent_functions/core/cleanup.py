"""Background sweeper for stores without native item expiry.

DynamoDB removes expired items through its TTL attribute. Stores that cannot
do that, such as InMemoryPersistenceStore, keep expired records until they
are overwritten. In long-lived workers the sweeper bounds that growth.

The sweeper:
1. Runs at configurable intervals (default 5 minutes)
2. Calls store.cleanup_expired() to remove expired records
3. Reports metrics and logs
4. Keeps running when a sweep fails

Examples:
    Start the sweeper in the background::

        from idempotent_functions.core.cleanup import start_cleanup_task, stop_cleanup_task
        from idempotent_functions.storage.memory import InMemoryPersistenceStore

        store = InMemoryPersistenceStore()
        handle = await start_cleanup_task(store, interval_seconds=300)

        # Later, when shutting down
        await stop_cleanup_task(handle)
"""

import asyncio
from dataclasses import dataclass, field

from idempotent_functions.observability.logging import get_logger
from idempotent_functions.observability.metrics import record_cleanup
from idempotent_functions.storage.base import SweepableStore

logger = get_logger(__name__)


async def cleanup_loop(
    store: SweepableStore,
    interval_seconds: float = 300,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Periodically remove expired records until stop_event is set.

    Args:
        store: Store to sweep
        interval_seconds: Time between sweeps
        stop_event: Event signalling the loop to stop
    """
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            count = await store.cleanup_expired()
            record_cleanup(count)

            if count > 0:
                logger.info("cleanup.completed", records_removed=count)
            else:
                logger.debug("cleanup.completed", records_removed=0)

        except Exception as e:
            # A failed sweep only delays removal; the next run retries
            logger.error(
                "cleanup.failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("cleanup.stopped")


@dataclass
class CleanupTask:
    """Handle for a running sweeper: its task and the event that stops it."""

    task: asyncio.Task[None]
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)


async def start_cleanup_task(
    store: SweepableStore,
    interval_seconds: float = 300,
) -> CleanupTask:
    """Start the sweeper as an asyncio Task.

    Returns:
        A CleanupTask handle; pass it to stop_cleanup_task()
    """
    stop_event = asyncio.Event()

    task = asyncio.create_task(
        cleanup_loop(
            store=store,
            interval_seconds=interval_seconds,
            stop_event=stop_event,
        )
    )

    return CleanupTask(task=task, stop_event=stop_event)


async def stop_cleanup_task(handle: CleanupTask, timeout: float = 5.0) -> None:
    """Signal the sweeper to stop and wait for it, cancelling on timeout."""
    handle.stop_event.set()

    try:
        await asyncio.wait_for(handle.task, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("cleanup.stop_timeout", timeout=timeout)
        handle.task.cancel()
        try:
            await handle.task
        except asyncio.CancelledError:
            logger.debug("cleanup.cancelled")
