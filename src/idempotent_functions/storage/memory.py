"""In-memory persistence store with asyncio concurrency control.

This module provides an in-process implementation of the PersistenceStore
protocol. Conditional writes are emulated with a compare-and-swap under a
per-key asyncio.Lock.

The InMemoryPersistenceStore is suitable for:
    - Single-process applications
    - Development and testing
    - Long-lived workers where persistence across restarts is not required

It has no native item expiry, so expired records linger until replaced or
swept with cleanup_expired() (see idempotent_functions.core.cleanup).

Thread Safety:
    - Each idempotency key has its own asyncio.Lock
    - A global lock protects the _locks dictionary
    - Locks are held only for the duration of a single operation

Examples:
    Basic usage::

        from idempotent_functions.storage.memory import InMemoryPersistenceStore

        store = InMemoryPersistenceStore()
        await store.put_in_progress(record, now=time.time())

    Concurrent claims::

        results = await asyncio.gather(
            store.put_in_progress(record, now),
            store.put_in_progress(record, now),
            return_exceptions=True,
        )
        # Exactly one is None, the other is ConditionalCheckFailedError
"""

import asyncio
import time
from collections.abc import Callable

from idempotent_functions.exceptions import ConditionalCheckFailedError, RecordNotFoundError
from idempotent_functions.models import IdempotencyRecord, RecordStatus
from idempotent_functions.storage.base import PersistenceStore


class InMemoryPersistenceStore(PersistenceStore):
    """In-memory persistence store with asyncio concurrency control.

    Attributes:
        _store: Dictionary mapping keys to IdempotencyRecord objects.
        _locks: Dictionary mapping keys to asyncio.Lock objects.
        _global_lock: Lock protecting the _locks dictionary.
        _clock: Time source used by cleanup_expired().
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize an empty store.

        Args:
            clock: Returns the current epoch time in seconds.
        """
        self._store: dict[str, IdempotencyRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()
        self._clock = clock

    async def _lock_for(self, key: str) -> asyncio.Lock:
        async with self._global_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    async def put_in_progress(
        self,
        record: IdempotencyRecord,
        now: float,
        replace: IdempotencyRecord | None = None,
    ) -> None:
        """Conditionally write a new INPROGRESS record.

        Race Condition Handling:
            The existing record is read and the new one written while the
            key's lock is held, so of N concurrent callers exactly one
            observes the slot as free.

        Args:
            record: The INPROGRESS record to write.
            now: Current epoch time in seconds.
            replace: Previously read record that must still be stored.

        Raises:
            ConditionalCheckFailedError: If the slot is taken.
        """
        key = record.idempotency_key
        lock = await self._lock_for(key)

        async with lock:
            existing = self._store.get(key)
            if existing is not None:
                if replace is not None:
                    if not _same_generation(existing, replace):
                        raise ConditionalCheckFailedError(
                            message=f"Record for key {key} changed since it was read",
                            key=key,
                        )
                elif not existing.is_expired(now):
                    raise ConditionalCheckFailedError(
                        message=f"Live record already exists for key {key}",
                        key=key,
                    )

            self._store[key] = record.model_copy()

    async def update_complete(
        self,
        key: str,
        response_data: str,
        expiry_timestamp: int,
    ) -> None:
        """Mark a record COMPLETED and store the serialized result.

        Raises:
            RecordNotFoundError: If the record no longer exists.
        """
        lock = await self._lock_for(key)

        async with lock:
            existing = self._store.get(key)
            if existing is None:
                raise RecordNotFoundError(
                    message=f"No record to complete for key {key}",
                    key=key,
                )
            self._store[key] = existing.model_copy(
                update={
                    "status": RecordStatus.COMPLETED,
                    "response_data": response_data,
                    "expiry_timestamp": expiry_timestamp,
                    "in_progress_expiry_timestamp": None,
                }
            )

    async def get(self, key: str) -> IdempotencyRecord | None:
        record = self._store.get(key)
        if record is None:
            return None
        return record.model_copy()

    async def delete(self, key: str) -> None:
        lock = await self._lock_for(key)

        async with lock:
            self._store.pop(key, None)

    async def cleanup_expired(self, now: float | None = None) -> int:
        """Remove records whose expiry_timestamp has passed.

        Stale INPROGRESS records that have not reached expiry_timestamp are
        kept; they are reclaimed by the next put_in_progress() instead.
        Unheld locks of removed keys are dropped as well.

        Args:
            now: Epoch seconds to judge expiry against. Defaults to the clock.

        Returns:
            The number of records removed.
        """
        if now is None:
            now = self._clock()

        expired_keys = [
            key for key, record in self._store.items() if record.expiry_timestamp < now
        ]

        removed_count = 0
        async with self._global_lock:
            for key in expired_keys:
                record = self._store.get(key)
                if record is not None and record.expiry_timestamp < now:
                    del self._store[key]
                    removed_count += 1

                lock = self._locks.get(key)
                if lock is not None and not lock.locked():
                    del self._locks[key]

        return removed_count


def _same_generation(stored: IdempotencyRecord, expected: IdempotencyRecord) -> bool:
    return (
        stored.expiry_timestamp == expected.expiry_timestamp
        and stored.in_progress_expiry_timestamp == expected.in_progress_expiry_timestamp
    )
