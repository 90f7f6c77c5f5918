"""Idempotency orchestrator.

This module provides the entry point adapters call into. The orchestrator
owns the configuration, the persistence store, the operation scope and the
optional local cache, and runs each call through the state machine.

The orchestrator:
1. Derives the idempotency key and validation hash from the payload
2. Bypasses idempotency when no key is found (or when disabled)
3. Delegates to the state machine for claim / replay / execute
4. Returns the producer result, new or replayed

Examples:
    Using the orchestrator directly::

        from idempotent_functions.core.orchestrator import IdempotencyOrchestrator
        from idempotent_functions.storage.memory import InMemoryPersistenceStore
        from idempotent_functions.config import IdempotencyConfig

        orchestrator = IdempotencyOrchestrator(
            persistence_store=InMemoryPersistenceStore(),
            config=IdempotencyConfig(event_key_jmespath="order_id"),
            function_name="orders.create",
        )

        async def create_order():
            return {"order_id": 42, "status": "created"}

        result = await orchestrator.process({"order_id": 42}, create_order)
"""

import time
from collections.abc import Callable
from typing import Any

from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.core.cache import LocalCache
from idempotent_functions.core.state_machine import StateResult, process_idempotency
from idempotent_functions.fingerprint import derive_key
from idempotent_functions.storage.base import PersistenceStore


class IdempotencyOrchestrator:
    """Makes producer invocations idempotent for one operation scope.

    Attributes:
        persistence_store: Store holding idempotency records
        config: Configuration object
        function_name: Scope prefixed to every idempotency key
    """

    def __init__(
        self,
        persistence_store: PersistenceStore,
        config: IdempotencyConfig | None = None,
        function_name: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            persistence_store: Store holding idempotency records
            config: Configuration object, defaults to IdempotencyConfig()
            function_name: Scope prefixed to every idempotency key
            clock: Returns the current epoch time in seconds

        Raises:
            ValueError: If function_name is empty
        """
        if not function_name:
            raise ValueError("function_name is required to namespace idempotency keys")

        self.persistence_store = persistence_store
        self.config = config or IdempotencyConfig()
        self.function_name = function_name
        self._clock = clock
        self._cache: LocalCache | None = None
        if self.config.use_local_cache:
            self._cache = LocalCache(max_items=self.config.local_cache_max_items)

    @property
    def local_cache(self) -> LocalCache | None:
        return self._cache

    async def process(
        self,
        payload: Any,
        producer: Callable[[], Any],
        remaining_time_in_millis: int | None = None,
    ) -> Any:
        """Run the producer idempotently for a payload.

        Args:
            payload: Payload the idempotency key is derived from
            producer: Zero-argument callable, sync or async
            remaining_time_in_millis: Execution budget left, if known

        Returns:
            The producer result, or the replayed result of an earlier call

        Raises:
            MissingIdempotencyKeyError: If no key is found in strict mode
            IdempotencyAlreadyInProgressError: If the key is locked
            IdempotencyValidationError: If payload validation fails
            IdempotencyPersistenceLayerError: If the store fails
        """
        result = await self.process_payload(payload, producer, remaining_time_in_millis)
        return result.result

    async def process_payload(
        self,
        payload: Any,
        producer: Callable[[], Any],
        remaining_time_in_millis: int | None = None,
    ) -> StateResult:
        """Like process(), returning the full StateResult."""
        if self.config.disabled:
            return await self.process_key(None, None, producer)

        derived = derive_key(payload, self.config, self.function_name)
        if derived is None:
            return await self.process_key(None, None, producer)

        return await self.process_key(
            derived.idempotency_key,
            derived.payload_hash,
            producer,
            remaining_time_in_millis,
        )

    async def process_key(
        self,
        key: str | None,
        payload_hash: str | None,
        producer: Callable[[], Any],
        remaining_time_in_millis: int | None = None,
    ) -> StateResult:
        """Run the state machine for an already derived key.

        Args:
            key: Idempotency key, or None to bypass
            payload_hash: Validation hash of the current payload
            producer: Zero-argument callable, sync or async
            remaining_time_in_millis: Execution budget left, if known
        """
        return await process_idempotency(
            store=self.persistence_store,
            key=key,
            payload_hash=payload_hash,
            producer=producer,
            config=self.config,
            cache=self._cache,
            remaining_time_in_millis=remaining_time_in_millis,
            clock=self._clock,
        )

    def clear_local_cache(self) -> None:
        """Drop every record from the local cache."""
        if self._cache is not None:
            self._cache.clear()
