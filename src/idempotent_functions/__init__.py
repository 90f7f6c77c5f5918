"""
Idempotency for serverless functions and other units of work.

This package makes a function execute at most once per idempotency key within
a time window. Repeated or concurrent calls with the same key replay the
original result or receive a well-defined in-progress signal.
"""

from idempotent_functions.adapters.function import idempotent, make_idempotent
from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.core.orchestrator import IdempotencyOrchestrator
from idempotent_functions.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
    MissingIdempotencyKeyError,
)
from idempotent_functions.storage.dynamodb import DynamoDBPersistenceStore
from idempotent_functions.storage.memory import InMemoryPersistenceStore

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "DynamoDBPersistenceStore",
    "IdempotencyAlreadyInProgressError",
    "IdempotencyConfig",
    "IdempotencyError",
    "IdempotencyOrchestrator",
    "IdempotencyPersistenceLayerError",
    "IdempotencyValidationError",
    "InMemoryPersistenceStore",
    "MissingIdempotencyKeyError",
    "idempotent",
    "make_idempotent",
]
