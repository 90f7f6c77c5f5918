"""Bounded in-process cache of completed idempotency records.

The cache lets a warm execution environment replay a result it has already
seen without a store round-trip. It is never a source of truth: the state
machine re-checks expiry and payload validation on every hit and never uses a
cached record to decide a conflict.

Examples:
    >>> cache = LocalCache(max_items=2)
    >>> cache.set("a", record_a)
    >>> cache.set("b", record_b)
    >>> cache.get("a")      # "a" becomes most recently used
    >>> cache.set("c", record_c)
    >>> "b" in cache        # least recently used entry evicted
    False
"""

from collections import OrderedDict

from idempotent_functions.models import IdempotencyRecord


class LocalCache:
    """LRU mapping of idempotency key to record snapshot.

    Attributes:
        max_items: Maximum number of records kept.
    """

    def __init__(self, max_items: int = 256) -> None:
        if max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {max_items}")
        self.max_items = max_items
        self._entries: OrderedDict[str, IdempotencyRecord] = OrderedDict()

    def get(self, key: str) -> IdempotencyRecord | None:
        """Return the cached record and mark it most recently used."""
        record = self._entries.get(key)
        if record is None:
            return None
        self._entries.move_to_end(key)
        return record

    def set(self, key: str, record: IdempotencyRecord) -> None:
        """Store a record, evicting the least recently used entries."""
        self._entries[key] = record
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_items:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
