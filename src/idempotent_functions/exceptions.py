"""Custom exceptions for idempotent function execution.

This module defines the exception hierarchy used throughout the package to
signal key derivation failures, concurrent executions, payload validation
mismatches and persistence failures.

Two layers exist:

1. Orchestrator errors (``IdempotencyAlreadyInProgressError``,
   ``IdempotencyValidationError``, ...) are what callers of an idempotent
   function see.
2. Store errors (``PersistenceStoreError`` and subclasses) are raised by
   ``PersistenceStore`` implementations and interpreted by the state machine.

Examples:
    Retrying a call that is still running elsewhere::

        from idempotent_functions.exceptions import IdempotencyAlreadyInProgressError

        try:
            result = await orchestrator.process(event, producer)
        except IdempotencyAlreadyInProgressError as e:
            logger.warning("idempotency.retry_later", key=e.key)
            raise

    Translating a store failure::

        from idempotent_functions.exceptions import PersistenceConnectionError

        try:
            await client.put_item(**kwargs)
        except ClientError as e:
            raise PersistenceConnectionError(
                message=f"Failed to write idempotency record: {e}",
                cause=e,
            ) from e
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class MissingIdempotencyKeyError(IdempotencyError):
    """No idempotency key could be extracted from the payload.

    Only raised when ``raise_on_no_idempotency_key`` is enabled. Without it the
    call bypasses idempotency entirely. No persistence I/O happens before this
    error is raised.

    Attributes:
        message: Human-readable error description.
        expression: The JMESPath expression that produced no value, if any.
    """

    def __init__(self, message: str, expression: str | None = None) -> None:
        super().__init__(message)
        self.expression = expression


class IdempotencyAlreadyInProgressError(IdempotencyError):
    """Another execution for the same key is still in flight.

    Callers should treat this as retryable: once the running execution
    completes its result will be replayed, and if it crashed its record becomes
    reclaimable after ``in_progress_expiry_timestamp``.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that is locked.
        in_progress_expiry_timestamp: Epoch seconds after which the running
            execution is considered abandoned, if known.
    """

    def __init__(
        self,
        message: str,
        key: str,
        in_progress_expiry_timestamp: int | None = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.in_progress_expiry_timestamp = in_progress_expiry_timestamp


class IdempotencyValidationError(IdempotencyError):
    """Payload validation hash mismatch for an existing record.

    Raised when a completed record exists for the key, but the validation hash
    computed for the current payload differs from the one stored with it. The
    stored result is never replayed in that case.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that was reused.
        stored_hash: The payload hash stored with the record.
        request_hash: The payload hash of the current call.

    Examples:
        Raising a validation error::

            if record.payload_hash != payload_hash:
                raise IdempotencyValidationError(
                    message=f"Payload does not match stored record for key {key}",
                    key=key,
                    stored_hash=record.payload_hash,
                    request_hash=payload_hash,
                )
    """

    def __init__(
        self,
        message: str,
        key: str,
        stored_hash: str | None,
        request_hash: str | None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.stored_hash = stored_hash
        self.request_hash = request_hash


class IdempotencyPersistenceLayerError(IdempotencyError):
    """The persistence store failed during the critical path.

    This wraps any store failure seen by the orchestrator. It is never retried
    internally. When raised after the producer ran, the producer's result is
    lost from the store's perspective and a retry of the call may re-execute.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class PersistenceStoreError(IdempotencyError):
    """Base class for errors raised by ``PersistenceStore`` implementations."""


class ConditionalCheckFailedError(PersistenceStoreError):
    """A conditional put was rejected because a live record exists.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that already exists.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class RecordNotFoundError(PersistenceStoreError):
    """A conditional update found no record to update.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that vanished.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class PersistenceConnectionError(PersistenceStoreError):
    """Store transport, authentication or throttling failure.

    Stores must translate backend-specific exceptions into this error so the
    orchestrator never sees them directly.

    Attributes:
        message: Human-readable error description.
        cause: The underlying backend exception.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause
