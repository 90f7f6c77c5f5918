"""Persistence store protocol for idempotent function execution.

This module defines the interface every persistence backend implements. The
orchestrator relies on exactly one concurrency primitive: the conditional put.
Its accept/reject outcome decides which caller owns a generation of a key;
everything else the orchestrator reads is advisory.

Examples:
    Implementing a custom store::

        from idempotent_functions.storage.base import PersistenceStore
        from idempotent_functions.models import IdempotencyRecord

        class MyStore:
            async def get(self, key: str) -> IdempotencyRecord | None:
                data = await self.backend.get(key)
                if data is None:
                    return None
                return IdempotencyRecord.model_validate_json(data)

            async def put_in_progress(
                self,
                record: IdempotencyRecord,
                now: float,
                replace: IdempotencyRecord | None = None,
            ) -> None:
                # Compare-and-swap against the stored record
                ...

Atomicity Requirements:
    All PersistenceStore implementations MUST guarantee:

    1. **Atomic conditional put**: put_in_progress() checks the existing
       record and writes the new one in a single atomic step. Of N concurrent
       callers for an absent key, exactly one succeeds.

    2. **Expiry-aware takeover**: an existing record blocks put_in_progress()
       only while it is live. A record past ``expiry_timestamp``, or an
       INPROGRESS record past ``in_progress_expiry_timestamp``, is replaced.

    3. **Exact takeover**: when ``replace`` is given, the write succeeds only
       if the stored record still carries the same expiry values as
       ``replace`` (or no record exists at all).

    4. **Error translation**: backend exceptions are raised as
       PersistenceConnectionError. Retries, if any, happen inside the store.
"""

from typing import Protocol, runtime_checkable

from idempotent_functions.models import IdempotencyRecord


@runtime_checkable
class PersistenceStore(Protocol):
    """Protocol defining the interface for idempotency persistence backends.

    All methods are async. A store is shared by independent invocations,
    possibly in separate processes, and must stay correct under arbitrary
    interleavings of their calls.

    Error Handling:
        ConditionalCheckFailedError when a conditional put is rejected,
        RecordNotFoundError when an update finds no record, and
        PersistenceConnectionError for every transport failure.
    """

    async def put_in_progress(
        self,
        record: IdempotencyRecord,
        now: float,
        replace: IdempotencyRecord | None = None,
    ) -> None:
        """Conditionally write a new INPROGRESS record.

        Args:
            record: The INPROGRESS record to write.
            now: Current epoch time in seconds, used to judge staleness.
            replace: Record previously read for this key. When given, the
                write succeeds only if the stored record still has the same
                ``expiry_timestamp`` and ``in_progress_expiry_timestamp``.

        Raises:
            ConditionalCheckFailedError: If a live record exists, or the stored
                record no longer matches ``replace``.
            PersistenceConnectionError: On backend failure.
        """
        ...

    async def update_complete(
        self,
        key: str,
        response_data: str,
        expiry_timestamp: int,
    ) -> None:
        """Mark a record COMPLETED and store the serialized result.

        Args:
            key: The idempotency key.
            response_data: JSON text of the producer result.
            expiry_timestamp: New expiry in epoch seconds.

        Raises:
            RecordNotFoundError: If the record no longer exists.
            PersistenceConnectionError: On backend failure.
        """
        ...

    async def get(self, key: str) -> IdempotencyRecord | None:
        """Retrieve the stored record for a key, or None if absent.

        Expired records may still be returned; callers judge expiry.

        Raises:
            PersistenceConnectionError: On backend failure.
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete the record for a key. Deleting an absent key is not an error.

        Raises:
            PersistenceConnectionError: On backend failure.
        """
        ...


@runtime_checkable
class SweepableStore(Protocol):
    """A store without native item expiry that can purge expired records."""

    async def cleanup_expired(self) -> int:
        """Remove records whose ``expiry_timestamp`` has passed.

        Returns:
            The number of records removed.
        """
        ...
