"""Persistence stores for idempotency records.

All stores implement the PersistenceStore protocol defined in base.py.

Available Stores:
    - InMemoryPersistenceStore: In-process storage with asyncio concurrency
    - DynamoDBPersistenceStore: DynamoDB table with conditional writes
"""

from idempotent_functions.storage.base import PersistenceStore, SweepableStore
from idempotent_functions.storage.dynamodb import DynamoDBPersistenceStore
from idempotent_functions.storage.memory import InMemoryPersistenceStore

__all__ = [
    "PersistenceStore",
    "SweepableStore",
    "InMemoryPersistenceStore",
    "DynamoDBPersistenceStore",
]
