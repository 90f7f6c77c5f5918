"""Replay of stored results.

A replay returns the result stored with a COMPLETED record instead of running
the producer again. Before a record is replayed its payload validation hash is
checked against the current call, so a key reused for a semantically different
payload is rejected rather than answered with someone else's result.

Examples:
    >>> validate_payload(record, payload_hash, config)
    >>> result = replay_response(record)
"""

from typing import Any

from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.exceptions import IdempotencyValidationError
from idempotent_functions.models import IdempotencyRecord


def validate_payload(
    record: IdempotencyRecord,
    payload_hash: str | None,
    config: IdempotencyConfig,
) -> None:
    """Check the current payload against a stored record.

    Args:
        record: The stored record about to be replayed
        payload_hash: Validation hash of the current payload
        config: Configuration (validation only applies when enabled)

    Raises:
        IdempotencyValidationError: If validation is enabled and the hashes differ
    """
    if not config.payload_validation_enabled:
        return
    if record.payload_hash != payload_hash:
        raise IdempotencyValidationError(
            message=f"Payload does not match the stored record for key {record.idempotency_key}",
            key=record.idempotency_key,
            stored_hash=record.payload_hash,
            request_hash=payload_hash,
        )


def matches_payload(
    record: IdempotencyRecord,
    payload_hash: str | None,
    config: IdempotencyConfig,
) -> bool:
    """Non-raising form of validate_payload()."""
    return not config.payload_validation_enabled or record.payload_hash == payload_hash


def replay_response(record: IdempotencyRecord) -> Any:
    """Decode the result stored with a completed record.

    Args:
        record: A COMPLETED record

    Returns:
        The stored producer result, decoded from JSON

    Raises:
        ValueError: If the record has no stored result or it is not valid JSON
    """
    if record.response_data is None:
        raise ValueError(f"Record {record.idempotency_key} has no stored response")

    try:
        return record.response_json_as_object()
    except ValueError as e:
        raise ValueError(f"Failed to decode stored response: {e}") from e
