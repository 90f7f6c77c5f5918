"""Utility modules for idempotent function execution."""

from .jmespath_functions import IdempotencyFunctions, search
from .serialization import canonical_json, dump_response, json_default

__all__ = [
    "IdempotencyFunctions",
    "search",
    "canonical_json",
    "dump_response",
    "json_default",
]
