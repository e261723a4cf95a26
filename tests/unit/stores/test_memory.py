from datetime import datetime, timedelta, timezone

import pytest

from reservation_arbiter.exceptions import (
    ConfigurationError,
    ReservationNotFoundError,
    TransactionConflictError,
)
from reservation_arbiter.stores.memory import MemoryIntervalStore, MemoryTransaction
from reservation_arbiter.types.reservation import Reservation
from reservation_arbiter.types.resource import Resource, ResourceState, UserProfile

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def booking(rid, start_h=0.0, end_h=1.0, resource="oven-1", owner="ada"):
    return Reservation(
        id=rid,
        resource_id=resource,
        owner_id=owner,
        start=T0 + timedelta(hours=start_h),
        end=T0 + timedelta(hours=end_h),
        created_at=T0,
    )


async def seed(store, *reservations):
    async def work(tx):
        for reservation in reservations:
            await tx.insert(reservation)

    await store.run_transaction(work)


class TestMemoryIntervalStore:
    @pytest.fixture
    def store(self):
        return MemoryIntervalStore(namespace="test")

    def test_init(self):
        store = MemoryIntervalStore(namespace="test_ns")
        assert store.namespace == "test_ns"
        assert store.store_type == "memory"
        assert store._reservations == {}

    @pytest.mark.asyncio
    async def test_begin_returns_memory_transaction(self, store):
        tx = await store._begin()
        assert isinstance(tx, MemoryTransaction)
        await store._release(tx)
        assert tx.closed

    @pytest.mark.asyncio
    async def test_list_reservations_sorted_by_start(self, store):
        await seed(store, booking("late", 5, 6), booking("early", 1, 2), booking("other", 0, 1, resource="oven-2"))
        assert [r.id for r in await store.list_reservations("oven-1")] == ["early", "late"]
        assert await store.list_reservations("missing") == []

    @pytest.mark.asyncio
    async def test_list_user_reservations(self, store):
        await seed(store, booking("past", -3, -1), booking("future", 1, 2, resource="oven-2"), booking("bob", 2, 3, owner="bob"))
        assert [r.id for r in await store.list_user_reservations("ada")] == ["past", "future"]
        assert [r.id for r in await store.list_user_reservations("ada", ending_at_or_after=T0)] == ["future"]

    @pytest.mark.asyncio
    async def test_resources_and_profiles(self, store):
        await store.save_resource(Resource("oven-1", "Oven", ResourceState.MAINTENANCE))
        await store.save_user_profile(UserProfile("ada", "Ada"))
        assert (await store.get_resource("oven-1")).state is ResourceState.MAINTENANCE
        assert (await store.get_user_profile("ada")).display_name == "Ada"
        assert await store.get_resource("nope") is None
        assert await store.get_user_profile("nope") is None

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await seed(store, booking("a"))
        await store.save_resource(Resource("oven-1", "Oven"))
        await store.clear()
        assert await store.get("a") is None
        assert await store.list_reservations("oven-1") == []
        assert await store.get_resource("oven-1") is None

    @pytest.mark.asyncio
    async def test_health_check(self, store):
        await seed(store, booking("a"))
        result = await store.health_check()
        assert result.healthy is True
        assert result.store_type == "memory"
        assert result.namespace == "test"
        assert result.metadata["reservations"] == 1
        assert result.metadata["commits"] == 1

    @pytest.mark.asyncio
    async def test_close_is_noop(self, store):
        await store.close()


class TestMemoryTransaction:
    @pytest.fixture
    async def store(self):
        store = MemoryIntervalStore()
        await seed(store, booking("a", 0, 1), booking("b", 2, 3))
        return store

    @pytest.mark.asyncio
    async def test_overlap_candidates_end_strictly_after(self, store):
        tx = await store._begin()
        candidates = await tx.query_overlap_candidates("oven-1", T0 + timedelta(hours=1))
        assert [r.id for r in candidates] == ["b"]

    @pytest.mark.asyncio
    async def test_user_reservations_end_at_or_after(self, store):
        tx = await store._begin()
        found = await tx.query_user_reservations("ada", T0 + timedelta(hours=1))
        assert [r.id for r in found] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_read_your_writes(self, store):
        tx = await store._begin()
        await tx.insert(booking("c", 4, 5))
        await tx.delete("a")
        moved = await tx.update("b", resource_id="oven-2")

        assert moved.resource_id == "oven-2"
        assert await tx.get("a") is None
        assert [r.id for r in await tx.query_overlap_candidates("oven-1", T0)] == ["c"]
        assert [r.id for r in await tx.query_overlap_candidates("oven-2", T0)] == ["b"]
        assert [r.id for r in await tx.query_user_reservations("ada", T0)] == ["b", "c"]
        # Nothing visible outside the transaction before commit
        assert await store.get("c") is None
        assert await store.get("a") is not None

    @pytest.mark.asyncio
    async def test_commit_applies_writes_and_indexes(self, store):
        tx = await store._begin()
        await tx.delete("a")
        await tx.update("b", resource_id="oven-2", owner_id="bob")
        await store._commit(tx)

        assert await store.get("a") is None
        assert [r.id for r in await store.list_reservations("oven-1")] == []
        assert [r.id for r in await store.list_reservations("oven-2")] == ["b"]
        assert await store.list_user_reservations("ada") == []
        assert [r.id for r in await store.list_user_reservations("bob")] == ["b"]

    @pytest.mark.asyncio
    async def test_update_and_delete_missing(self, store):
        tx = await store._begin()
        with pytest.raises(ReservationNotFoundError):
            await tx.update("nope", label="x")
        with pytest.raises(ReservationNotFoundError):
            await tx.delete("nope")

    @pytest.mark.asyncio
    async def test_insert_duplicate_id(self, store):
        tx = await store._begin()
        with pytest.raises(ValueError):
            await tx.insert(booking("a", 8, 9))

    @pytest.mark.asyncio
    async def test_concurrent_inserts_on_same_resource_conflict(self, store):
        """Two transactions that both read the resource index cannot both commit."""
        first = await store._begin()
        second = await store._begin()
        for tx, rid in ((first, "x"), (second, "y")):
            await tx.query_overlap_candidates("oven-1", T0 + timedelta(hours=5))
            await tx.insert(booking(rid, 5, 6))

        await store._commit(first)
        assert not await store._validate(second)
        with pytest.raises(TransactionConflictError):
            await store._commit(second)

        assert await store.get("x") is not None
        assert await store.get("y") is None
        assert (await store.health_check()).metadata["conflicts"] == 1

    @pytest.mark.asyncio
    async def test_disjoint_resources_commit_independently(self, store):
        first = await store._begin()
        second = await store._begin()
        await first.query_overlap_candidates("oven-1", T0 + timedelta(hours=5))
        await first.insert(booking("x", 5, 6))
        await second.query_overlap_candidates("oven-9", T0 + timedelta(hours=5))
        await second.insert(booking("y", 5, 6, resource="oven-9", owner="bob"))

        await store._commit(first)
        await store._commit(second)
        assert await store.get("y") is not None

    @pytest.mark.asyncio
    async def test_resource_change_invalidates_reader(self, store):
        tx = await store._begin()
        await tx.get_resource("oven-1")
        await store.save_resource(Resource("oven-1", "Oven", ResourceState.MAINTENANCE))
        assert not await store._validate(tx)

    @pytest.mark.asyncio
    async def test_clear_invalidates_open_transactions(self, store):
        tx = await store._begin()
        await tx.get("a")
        await store.clear()
        with pytest.raises(TransactionConflictError):
            await store._commit(tx)


async def cancel(store, reservation_id):
    async def work(tx):
        await tx.delete(reservation_id)

    await store.run_transaction(work)


class TestMemoryHousekeeping:
    @pytest.fixture
    def store(self):
        return MemoryIntervalStore()

    @pytest.mark.asyncio
    async def test_create_and_cancel_churn_leaves_no_bookkeeping(self, store):
        for i in range(300):
            await seed(store, booking(f"r{i}", resource=f"oven-{i}", owner=f"user-{i}"))
            await cancel(store, f"r{i}")

        assert store._reservations == {}
        assert store._by_resource == {}
        assert store._by_user == {}
        assert store._versions == {}
        assert store._open_transactions == 0

    @pytest.mark.asyncio
    async def test_reads_of_missing_keys_are_not_recorded(self, store):
        async def work(tx):
            await tx.get("nope")
            await tx.get_resource("oven-404")
            await tx.get_user_profile("ghost")
            await tx.query_overlap_candidates("oven-404", T0)
            await tx.query_user_reservations("ghost", T0)

        await store.run_transaction(work)
        assert store._versions == {}

    @pytest.mark.asyncio
    async def test_live_keys_keep_their_versions(self, store):
        await seed(store, booking("a"), booking("b", 2, 3))
        await cancel(store, "a")

        assert "reservation:b" in store._versions
        assert "resource_index:oven-1" in store._versions
        assert "reservation:a" not in store._versions
        assert store._by_resource == {"oven-1": {"b"}}

    @pytest.mark.asyncio
    async def test_pruning_waits_for_open_transactions(self, store):
        await seed(store, booking("a"))
        reader = await store._begin()
        await reader.get("a")

        await cancel(store, "a")
        assert "reservation:a" in store._versions
        assert not await store._validate(reader)

        await store._release(reader)
        assert "reservation:a" not in store._versions

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, store):
        tx = await store._begin()
        await store._release(tx)
        await store._release(tx)
        assert store._open_transactions == 0

    @pytest.mark.asyncio
    async def test_foreign_transaction_rejected(self, store):
        other = MemoryIntervalStore()
        tx = await other._begin()
        try:
            with pytest.raises(ConfigurationError):
                await store._commit(tx)
            with pytest.raises(ConfigurationError):
                await store._validate(tx)
        finally:
            await other._release(tx)
