"""Unit tests for InMemoryPersistenceStore.

Tests in this module verify conditional claims, completion, deletion and
cleanup, including behavior under concurrent access.
"""

import asyncio

import pytest

from idempotent_functions.exceptions import ConditionalCheckFailedError, RecordNotFoundError
from idempotent_functions.models import IdempotencyRecord, RecordStatus
from idempotent_functions.storage.base import PersistenceStore, SweepableStore
from idempotent_functions.storage.memory import InMemoryPersistenceStore

NOW = 1_700_000_000


def in_progress(key: str = "fn#k", expiry: int = NOW + 60, lock_expiry: int | None = NOW + 10):
    return IdempotencyRecord(
        idempotency_key=key,
        status=RecordStatus.INPROGRESS,
        expiry_timestamp=expiry,
        in_progress_expiry_timestamp=lock_expiry,
        payload_hash="h1",
    )


class TestProtocol:
    def test_store_satisfies_protocols(self):
        store = InMemoryPersistenceStore()
        assert isinstance(store, PersistenceStore)
        assert isinstance(store, SweepableStore)


class TestPutInProgress:
    @pytest.mark.asyncio
    async def test_claim_free_slot(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        stored = await store.get("fn#k")
        assert stored is not None
        assert stored.status is RecordStatus.INPROGRESS
        assert stored.payload_hash == "h1"

    @pytest.mark.asyncio
    async def test_live_record_blocks_claim(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        with pytest.raises(ConditionalCheckFailedError) as exc_info:
            await store.put_in_progress(in_progress(), NOW + 1)
        assert exc_info.value.key == "fn#k"

    @pytest.mark.asyncio
    async def test_abandoned_in_progress_can_be_claimed(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        newer = in_progress(expiry=NOW + 120, lock_expiry=NOW + 30)
        await store.put_in_progress(newer, NOW + 11)
        stored = await store.get("fn#k")
        assert stored.in_progress_expiry_timestamp == NOW + 30

    @pytest.mark.asyncio
    async def test_expired_completed_can_be_claimed(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        await store.update_complete("fn#k", '"done"', NOW + 5)
        await store.put_in_progress(in_progress(expiry=NOW + 100), NOW + 6)
        stored = await store.get("fn#k")
        assert stored.status is RecordStatus.INPROGRESS

    @pytest.mark.asyncio
    async def test_replace_requires_same_generation(self):
        store = InMemoryPersistenceStore()
        original = in_progress()
        await store.put_in_progress(original, NOW)

        first = in_progress(expiry=NOW + 200, lock_expiry=NOW + 50)
        await store.put_in_progress(first, NOW + 11, replace=original)

        # A second taker that read the same stale record loses
        second = in_progress(expiry=NOW + 201, lock_expiry=NOW + 51)
        with pytest.raises(ConditionalCheckFailedError):
            await store.put_in_progress(second, NOW + 11, replace=original)

        stored = await store.get("fn#k")
        assert stored.expiry_timestamp == NOW + 200

    @pytest.mark.asyncio
    async def test_replace_on_vanished_record_succeeds(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW, replace=in_progress())
        assert await store.get("fn#k") is not None

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self):
        store = InMemoryPersistenceStore()
        results = await asyncio.gather(
            *(store.put_in_progress(in_progress(), NOW) for _ in range(10)),
            return_exceptions=True,
        )
        winners = [r for r in results if r is None]
        losers = [r for r in results if isinstance(r, ConditionalCheckFailedError)]
        assert len(winners) == 1
        assert len(losers) == 9

    @pytest.mark.asyncio
    async def test_stored_record_is_a_copy(self):
        store = InMemoryPersistenceStore()
        record = in_progress()
        await store.put_in_progress(record, NOW)
        fetched = await store.get("fn#k")
        assert fetched == record
        assert fetched is not record


class TestUpdateComplete:
    @pytest.mark.asyncio
    async def test_complete_sets_result_and_clears_lock_expiry(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        await store.update_complete("fn#k", '{"ok":true}', NOW + 3600)

        stored = await store.get("fn#k")
        assert stored.status is RecordStatus.COMPLETED
        assert stored.response_data == '{"ok":true}'
        assert stored.expiry_timestamp == NOW + 3600
        assert stored.in_progress_expiry_timestamp is None
        assert stored.payload_hash == "h1"

    @pytest.mark.asyncio
    async def test_complete_missing_record(self):
        store = InMemoryPersistenceStore()
        with pytest.raises(RecordNotFoundError):
            await store.update_complete("fn#missing", "null", NOW)


class TestGetAndDelete:
    @pytest.mark.asyncio
    async def test_get_missing(self):
        assert await InMemoryPersistenceStore().get("fn#missing") is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        await store.delete("fn#k")
        await store.delete("fn#k")
        assert await store.get("fn#k") is None


class TestCleanupExpired:
    @pytest.mark.asyncio
    async def test_cleanup_removes_only_expired(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress("fn#old", expiry=NOW + 5, lock_expiry=NOW + 5), NOW)
        await store.put_in_progress(in_progress("fn#new", expiry=NOW + 500), NOW)

        removed = await store.cleanup_expired(now=NOW + 6)

        assert removed == 1
        assert await store.get("fn#old") is None
        assert await store.get("fn#new") is not None

    @pytest.mark.asyncio
    async def test_cleanup_keeps_stale_in_progress_before_expiry(self):
        store = InMemoryPersistenceStore()
        await store.put_in_progress(in_progress(), NOW)
        assert await store.cleanup_expired(now=NOW + 20) == 0

    @pytest.mark.asyncio
    async def test_cleanup_uses_injected_clock(self, clock):
        store = InMemoryPersistenceStore(clock=clock)
        now = int(clock())
        await store.put_in_progress(in_progress(expiry=now + 1, lock_expiry=now + 1), now)
        assert await store.cleanup_expired() == 0
        clock.advance(2)
        assert await store.cleanup_expired() == 1
