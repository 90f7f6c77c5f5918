"""Idempotency key derivation.

The idempotency key identifies a logical operation instance. It is computed
from the payload (or the part of it selected by ``event_key_jmespath``):

1. Extract: JMESPath search, or the whole payload when no expression is set
2. Canonicalize: JSON with sorted keys and fixed separators
3. Hash: ``config.hash_function`` hex digest
4. Namespace: ``"<scope>#<digest>"`` so operations sharing a store never collide

The optional payload validation hash is computed the same way from the subset
selected by ``payload_validation_jmespath``, without the namespace.

Nothing here performs I/O; identical inputs always produce identical keys.
"""

import hashlib
from typing import Any

from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.exceptions import MissingIdempotencyKeyError
from idempotent_functions.models import DerivedKey
from idempotent_functions.observability.logging import get_logger
from idempotent_functions.utils.jmespath_functions import search
from idempotent_functions.utils.serialization import canonical_json

logger = get_logger(__name__)


def derive_key(payload: Any, config: IdempotencyConfig, scope: str) -> DerivedKey | None:
    """Compute the idempotency key and validation hash for a payload.

    Args:
        payload: The request payload (any JSON-compatible value)
        config: Configuration selecting expressions and hash function
        scope: Operation namespace, usually the function name

    Returns:
        DerivedKey, or None when no key could be extracted and the call should
        bypass idempotency.

    Raises:
        MissingIdempotencyKeyError: If no key was found and
            ``raise_on_no_idempotency_key`` is enabled.

    Examples:
        >>> config = IdempotencyConfig(event_key_jmespath="order_id")
        >>> derived = derive_key({"order_id": 42}, config, scope="orders.create")
        >>> derived.idempotency_key.startswith("orders.create#")
        True
        >>> derive_key({"other": 1}, config, scope="orders.create") is None
        True
    """
    key = compute_idempotency_key(payload, config, scope)
    if key is None:
        return None
    return DerivedKey(
        idempotency_key=key,
        payload_hash=compute_payload_hash(payload, config),
    )


def compute_idempotency_key(payload: Any, config: IdempotencyConfig, scope: str) -> str | None:
    """Extract, hash and namespace the idempotency key.

    Returns:
        ``"<scope>#<digest>"``, or None when the key is missing and strict mode
        is off.

    Raises:
        MissingIdempotencyKeyError: If the key is missing in strict mode.
    """
    data = payload
    if config.event_key_jmespath:
        data = search(config.event_key_jmespath, payload)

    if is_missing_idempotency_key(data):
        if config.raise_on_no_idempotency_key:
            raise MissingIdempotencyKeyError(
                message="No data found to create a hashed idempotency key",
                expression=config.event_key_jmespath,
            )
        logger.warning(
            "idempotency.key_missing",
            scope=scope,
            expression=config.event_key_jmespath,
        )
        return None

    return f"{scope}#{hash_data(data, config.hash_function)}"


def compute_payload_hash(payload: Any, config: IdempotencyConfig) -> str | None:
    """Hash the payload subset used for replay validation.

    Returns:
        Hex digest, or None when validation is disabled.
    """
    if config.payload_validation_jmespath is None:
        return None
    data = search(config.payload_validation_jmespath, payload)
    return hash_data(data, config.hash_function)


def hash_data(data: Any, hash_function: str = "md5") -> str:
    """Hash the canonical JSON form of ``data``.

    Examples:
        >>> hash_data({"b": 1, "a": 2}) == hash_data({"a": 2, "b": 1})
        True
    """
    hasher = hashlib.new(hash_function)
    hasher.update(canonical_json(data).encode("utf-8"))
    return hasher.hexdigest()


def is_missing_idempotency_key(data: Any) -> bool:
    """Decide whether extracted data is unusable as a key.

    None, empty strings and empty containers are missing, as are containers
    whose values are all None (a multi-select where no field matched).
    Numbers and booleans, including zero and False, are valid keys.

    Examples:
        >>> is_missing_idempotency_key([None, None])
        True
        >>> is_missing_idempotency_key(0)
        False
    """
    if data is None:
        return True
    if isinstance(data, (bool, int, float)):
        return False
    if isinstance(data, dict):
        return all(value is None for value in data.values())
    if isinstance(data, (list, tuple)):
        return all(value is None for value in data)
    return not data
