"""JSON encoding helpers for payloads and stored results.

Payloads are hashed from their canonical JSON text and producer results are
stored as JSON text, so both go through the same encoder. The encoder accepts
the types that show up in real event payloads and handler results (DynamoDB
``Decimal`` numbers, pydantic models, dataclasses, datetimes, UUIDs).
"""

import dataclasses
import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def json_default(value: Any) -> Any:
    """Convert values the standard JSON encoder does not know.

    Args:
        value: Object that json.dumps could not serialize.

    Returns:
        A JSON-compatible representation.

    Raises:
        TypeError: If the value has no known representation.

    Examples:
        >>> json_default(Decimal("10"))
        10
        >>> json_default(Decimal("1.5"))
        1.5
    """
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Serialize a value deterministically for hashing.

    Keys are sorted and separators are fixed so logically identical payloads
    always produce the same text.

    Examples:
        >>> canonical_json({"b": 1, "a": [1, 2]})
        '{"a":[1,2],"b":1}'
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=json_default)


def dump_response(value: Any) -> str:
    """Serialize a producer result for storage."""
    return json.dumps(value, separators=(",", ":"), default=json_default)
