"""State machine for idempotent execution.

This module implements the record lifecycle for a single key:

    ABSENT -> INPROGRESS -> COMPLETED
                         -> ABSENT (producer raised, record deleted)

A COMPLETED record decays to ABSENT once its expiry passes, and an INPROGRESS
record becomes reclaimable once its in-progress expiry passes (the worker
crashed or ran out of time).

Ownership of a generation is decided only by the store's conditional put.
Reads after a rejected put are advisory: they decide whether to replay, to
signal in-progress, or to attempt one takeover of a stale record. A takeover
that loses again is reported as in-progress rather than retried.

Examples:
    Processing a call::

        from idempotent_functions.core.state_machine import process_idempotency
        from idempotent_functions.storage.memory import InMemoryPersistenceStore
        from idempotent_functions.config import IdempotencyConfig

        result = await process_idempotency(
            store=InMemoryPersistenceStore(),
            key="orders.create#5d41...",
            payload_hash=None,
            producer=lambda: create_order(event),
            config=IdempotencyConfig(),
        )
        result.result        # the producer's return value
        result.was_replayed  # False on the first call
"""

import inspect
import math
import time
from collections.abc import Callable
from typing import Any

from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.core.cache import LocalCache
from idempotent_functions.core.replay import matches_payload, replay_response, validate_payload
from idempotent_functions.exceptions import (
    ConditionalCheckFailedError,
    IdempotencyAlreadyInProgressError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
    PersistenceStoreError,
)
from idempotent_functions.models import IdempotencyRecord, RecordStatus
from idempotent_functions.observability.logging import get_logger
from idempotent_functions.observability.metrics import (
    decrement_in_progress,
    increment_in_progress,
    record_execution_time,
    record_invocation,
)
from idempotent_functions.storage.base import PersistenceStore
from idempotent_functions.utils.serialization import dump_response

logger = get_logger(__name__)

# First claim plus one takeover of a stale record
MAX_PUT_ATTEMPTS = 2


class StateResult:
    """Result of state machine processing.

    Attributes:
        result: The producer result (new or replayed)
        was_replayed: True if the result came from a stored record
        execution_time_ms: Producer execution time (None for replays and bypass)
    """

    def __init__(
        self,
        result: Any,
        was_replayed: bool,
        execution_time_ms: int | None = None,
    ) -> None:
        self.result = result
        self.was_replayed = was_replayed
        self.execution_time_ms = execution_time_ms


async def process_idempotency(
    store: PersistenceStore,
    key: str | None,
    payload_hash: str | None,
    producer: Callable[[], Any],
    config: IdempotencyConfig,
    cache: LocalCache | None = None,
    remaining_time_in_millis: int | None = None,
    clock: Callable[[], float] = time.time,
) -> StateResult:
    """Run a producer at most once per key.

    Flow:
        1. No key (or disabled): run the producer, no store I/O
        2. Local cache hit on a valid completed record: replay
        3. Conditional put of an INPROGRESS record, resolving conflicts
        4. Run the producer, then complete (or delete) the record

    Args:
        store: Persistence store shared by all invocations
        key: Idempotency key, or None to bypass
        payload_hash: Validation hash of the current payload
        producer: Zero-argument callable, sync or async
        config: Configuration object
        cache: Local cache, if enabled
        remaining_time_in_millis: Execution budget left for this invocation
        clock: Returns the current epoch time in seconds

    Returns:
        StateResult with the result and metadata

    Raises:
        IdempotencyAlreadyInProgressError: If another execution owns the key
        IdempotencyValidationError: If the stored record's payload differs
        IdempotencyPersistenceLayerError: If the store fails
        Exception: Whatever the producer raised, unchanged
    """
    if key is None or config.disabled:
        record_invocation("bypass")
        result = await invoke_producer(producer)
        return StateResult(result=result, was_replayed=False)

    if cache is not None:
        cached = _replay_from_cache(cache, key, payload_hash, config, clock())
        if cached is not None:
            return cached

    replayed = await acquire_generation(
        store=store,
        key=key,
        payload_hash=payload_hash,
        config=config,
        cache=cache,
        remaining_time_in_millis=remaining_time_in_millis,
        clock=clock,
    )
    if replayed is not None:
        return replayed

    return await execute_producer(
        store=store,
        key=key,
        payload_hash=payload_hash,
        producer=producer,
        config=config,
        cache=cache,
        clock=clock,
    )


async def acquire_generation(
    store: PersistenceStore,
    key: str,
    payload_hash: str | None,
    config: IdempotencyConfig,
    cache: LocalCache | None = None,
    remaining_time_in_millis: int | None = None,
    clock: Callable[[], float] = time.time,
) -> StateResult | None:
    """Claim the key for a new generation, or resolve the conflict.

    Returns:
        None if this caller now owns the key and must run the producer,
        or a StateResult replaying a completed record.

    Raises:
        IdempotencyAlreadyInProgressError: If a live execution owns the key,
            or a takeover of a stale record lost the race.
        IdempotencyValidationError: If a completed record fails validation.
        IdempotencyPersistenceLayerError: If the store fails.
    """
    replace: IdempotencyRecord | None = None

    for attempt in range(1, MAX_PUT_ATTEMPTS + 1):
        now = clock()
        record = new_in_progress_record(key, payload_hash, config, now, remaining_time_in_millis)

        try:
            await store.put_in_progress(record, now=now, replace=replace)
        except ConditionalCheckFailedError:
            logger.debug("idempotency.put_conflict", key=key, attempt=attempt)
        except PersistenceStoreError as e:
            record_invocation("persistence_error")
            raise IdempotencyPersistenceLayerError(
                message=f"Failed to save in progress record for key {key}",
                cause=e,
            ) from e
        else:
            logger.debug("idempotency.claimed", key=key, takeover=replace is not None)
            return None

        existing = await _get_record(store, key)
        if existing is None:
            # Deleted between the put and the get; the slot may be free again
            replace = None
            continue

        status = existing.effective_status(clock())
        if status is RecordStatus.COMPLETED:
            return _replay_existing(existing, payload_hash, config, cache)

        if status is RecordStatus.INPROGRESS:
            record_invocation("in_progress")
            logger.info(
                "idempotency.in_progress",
                key=key,
                in_progress_expiry_timestamp=existing.in_progress_expiry_timestamp,
            )
            raise IdempotencyAlreadyInProgressError(
                message=f"Execution already in progress with idempotency key {key}",
                key=key,
                in_progress_expiry_timestamp=existing.in_progress_expiry_timestamp,
            )

        logger.info("idempotency.stale_record", key=key, stored_status=existing.status.value)
        replace = existing

    record_invocation("in_progress")
    logger.info("idempotency.takeover_lost", key=key)
    raise IdempotencyAlreadyInProgressError(
        message=f"Lost the race to reclaim idempotency key {key}",
        key=key,
    )


async def execute_producer(
    store: PersistenceStore,
    key: str,
    payload_hash: str | None,
    producer: Callable[[], Any],
    config: IdempotencyConfig,
    cache: LocalCache | None = None,
    clock: Callable[[], float] = time.time,
) -> StateResult:
    """Run the producer for an owned generation and record the outcome.

    On success the record becomes COMPLETED. If the producer raises, the
    record is deleted so a retry can run again, and the producer's exception
    propagates unchanged.

    Raises:
        IdempotencyPersistenceLayerError: If the result cannot be stored. The
            producer has already run at that point.
    """
    start_time = time.perf_counter()
    increment_in_progress()
    try:
        result = await invoke_producer(producer)
    except Exception as e:
        record_invocation("producer_error")
        logger.info("idempotency.producer_failed", key=key, error_type=type(e).__name__)
        await _delete_after_failure(store, key, cache)
        raise
    finally:
        decrement_in_progress()

    execution_time_ms = int((time.perf_counter() - start_time) * 1000)
    record_execution_time(execution_time_ms)

    expiry_timestamp = int(clock()) + config.expires_after_seconds
    try:
        response_data = dump_response(result)
        await store.update_complete(key, response_data, expiry_timestamp)
    except (TypeError, ValueError, PersistenceStoreError) as e:
        record_invocation("persistence_error")
        logger.error(
            "idempotency.update_failed",
            key=key,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise IdempotencyPersistenceLayerError(
            message=f"Failed to save the result for key {key} to the idempotency store",
            cause=e,
        ) from e

    if cache is not None:
        cache.set(
            key,
            IdempotencyRecord(
                idempotency_key=key,
                status=RecordStatus.COMPLETED,
                expiry_timestamp=expiry_timestamp,
                response_data=response_data,
                payload_hash=payload_hash,
            ),
        )

    record_invocation("new")
    logger.debug("idempotency.completed", key=key, execution_time_ms=execution_time_ms)
    return StateResult(
        result=result,
        was_replayed=False,
        execution_time_ms=execution_time_ms,
    )


def new_in_progress_record(
    key: str,
    payload_hash: str | None,
    config: IdempotencyConfig,
    now: float,
    remaining_time_in_millis: int | None = None,
) -> IdempotencyRecord:
    """Build the INPROGRESS record for a claim attempt.

    The in-progress expiry is the record expiry, capped by the remaining
    execution budget when one is known. The budget end is rounded up and
    never earlier than ``ceil(now)``, so a fresh claim is never born stale.

    Examples:
        >>> record = new_in_progress_record("fn#a", None, IdempotencyConfig(), 1000.0, 30_000)
        >>> record.expiry_timestamp, record.in_progress_expiry_timestamp
        (4600, 1030)
    """
    expiry_timestamp = int(now) + config.expires_after_seconds
    in_progress_expiry = expiry_timestamp
    if remaining_time_in_millis is not None:
        budget_end = math.ceil(now + max(remaining_time_in_millis, 0) / 1000)
        in_progress_expiry = min(expiry_timestamp, budget_end)

    return IdempotencyRecord(
        idempotency_key=key,
        status=RecordStatus.INPROGRESS,
        expiry_timestamp=expiry_timestamp,
        in_progress_expiry_timestamp=in_progress_expiry,
        payload_hash=payload_hash,
    )


async def invoke_producer(producer: Callable[[], Any]) -> Any:
    """Call a sync or async zero-argument producer."""
    result = producer()
    if inspect.isawaitable(result):
        result = await result
    return result


def _replay_from_cache(
    cache: LocalCache,
    key: str,
    payload_hash: str | None,
    config: IdempotencyConfig,
    now: float,
) -> StateResult | None:
    record = cache.get(key)
    if record is None:
        return None

    if record.effective_status(now) is not RecordStatus.COMPLETED:
        cache.delete(key)
        return None

    # A mismatch falls through to the store, which decides authoritatively
    if not matches_payload(record, payload_hash, config):
        return None

    record_invocation("cache_hit")
    logger.debug("idempotency.cache_hit", key=key)
    return StateResult(result=replay_response(record), was_replayed=True)


def _replay_existing(
    record: IdempotencyRecord,
    payload_hash: str | None,
    config: IdempotencyConfig,
    cache: LocalCache | None,
) -> StateResult:
    try:
        validate_payload(record, payload_hash, config)
    except IdempotencyValidationError:
        record_invocation("validation_error")
        logger.warning("idempotency.validation_failed", key=record.idempotency_key)
        raise

    if cache is not None:
        cache.set(record.idempotency_key, record)

    record_invocation("replay")
    logger.info("idempotency.replay", key=record.idempotency_key)
    return StateResult(result=replay_response(record), was_replayed=True)


async def _get_record(store: PersistenceStore, key: str) -> IdempotencyRecord | None:
    try:
        return await store.get(key)
    except PersistenceStoreError as e:
        record_invocation("persistence_error")
        raise IdempotencyPersistenceLayerError(
            message=f"Failed to get record for key {key} from idempotency store",
            cause=e,
        ) from e


async def _delete_after_failure(
    store: PersistenceStore,
    key: str,
    cache: LocalCache | None,
) -> None:
    if cache is not None:
        cache.delete(key)
    try:
        await store.delete(key)
    except Exception as e:
        # The producer's exception is the one the caller must see
        logger.error(
            "idempotency.delete_failed",
            key=key,
            error=str(e),
            error_type=type(e).__name__,
        )
