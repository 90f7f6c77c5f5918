"""Core type definitions for idempotent function execution.

This module provides the data structures shared by the key deriver, the
persistence stores and the state machine: record statuses, the idempotency
record itself and the derived key pair.

Examples:
    Creating an in-progress record::

        import time
        from idempotent_functions.models import IdempotencyRecord, RecordStatus

        now = int(time.time())
        record = IdempotencyRecord(
            idempotency_key="orders.create#3f2a...",
            status=RecordStatus.INPROGRESS,
            expiry_timestamp=now + 3600,
            in_progress_expiry_timestamp=now + 30,
        )

    Checking what a stored record means right now::

        if record.effective_status(time.time()) is RecordStatus.EXPIRED:
            # Treat the key as absent
            ...
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class RecordStatus(str, Enum):
    """Status of an idempotency record.

    Attributes:
        INPROGRESS: The producer is running for this generation.
        COMPLETED: The producer returned and its result is stored.
        EXPIRED: Derived at read time only, never persisted. The record's
            expiry (or in-progress expiry) has passed.
    """

    INPROGRESS = "INPROGRESS"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class IdempotencyRecord(BaseModel):
    """A stored idempotency record.

    Attributes:
        idempotency_key: Namespaced hashed key, ``"<scope>#<digest>"``.
        status: Stored status, ``INPROGRESS`` or ``COMPLETED``.
        expiry_timestamp: Epoch seconds after which the record is invalid.
        in_progress_expiry_timestamp: Epoch seconds after which an
            ``INPROGRESS`` record is considered abandoned.
        response_data: JSON text of the producer result (``COMPLETED`` only).
        payload_hash: Validation hash of the payload subset, if enabled.
    """

    idempotency_key: str = Field(
        ...,
        description="Namespaced hash identifying the logical operation instance",
        min_length=1,
        examples=["orders.create#5d41402abc4b2a76b9719d911017c592"],
    )
    status: RecordStatus = Field(
        ...,
        description="Stored status of the record",
    )
    expiry_timestamp: int = Field(
        ...,
        description="Epoch seconds when the record stops being valid",
        ge=0,
    )
    in_progress_expiry_timestamp: int | None = Field(
        default=None,
        description="Epoch seconds when an in-progress record is abandoned",
        ge=0,
    )
    response_data: str | None = Field(
        default=None,
        description="JSON-encoded producer result",
    )
    payload_hash: str | None = Field(
        default=None,
        description="Hash of the payload subset used for validation",
    )

    @model_validator(mode="after")
    def validate_record(self) -> "IdempotencyRecord":
        """Reject statuses and timestamps that can never be persisted.

        Raises:
            ValueError: If the status is ``EXPIRED`` or the in-progress expiry
                is later than the record expiry.
        """
        if self.status is RecordStatus.EXPIRED:
            raise ValueError("EXPIRED is derived at read time and cannot be stored")
        if (
            self.in_progress_expiry_timestamp is not None
            and self.in_progress_expiry_timestamp > self.expiry_timestamp
        ):
            raise ValueError("in_progress_expiry_timestamp must not exceed expiry_timestamp")
        return self

    def effective_status(self, now: float) -> RecordStatus:
        """Return the status this record has at ``now``.

        Args:
            now: Current epoch time in seconds.

        Returns:
            ``EXPIRED`` if the record (or its in-progress lock) has lapsed,
            otherwise the stored status.

        Examples:
            >>> record = IdempotencyRecord(
            ...     idempotency_key="fn#abc",
            ...     status=RecordStatus.INPROGRESS,
            ...     expiry_timestamp=100,
            ...     in_progress_expiry_timestamp=50,
            ... )
            >>> record.effective_status(40)
            <RecordStatus.INPROGRESS: 'INPROGRESS'>
            >>> record.effective_status(60)
            <RecordStatus.EXPIRED: 'EXPIRED'>
        """
        if self.expiry_timestamp < now:
            return RecordStatus.EXPIRED
        if (
            self.status is RecordStatus.INPROGRESS
            and self.in_progress_expiry_timestamp is not None
            and self.in_progress_expiry_timestamp < now
        ):
            return RecordStatus.EXPIRED
        return self.status

    def is_expired(self, now: float) -> bool:
        """Whether the record is logically absent at ``now``."""
        return self.effective_status(now) is RecordStatus.EXPIRED

    def response_json_as_object(self) -> Any:
        """Decode the stored response.

        Returns:
            The decoded JSON value, or None when nothing is stored.
        """
        if self.response_data is None:
            return None
        return json.loads(self.response_data)


class DerivedKey(BaseModel):
    """Result of key derivation for a single call.

    Attributes:
        idempotency_key: Namespaced hashed key.
        payload_hash: Validation hash, None when validation is disabled.
    """

    idempotency_key: str = Field(..., min_length=1)
    payload_hash: str | None = None

    model_config = {"frozen": True}
