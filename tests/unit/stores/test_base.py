import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from reservation_arbiter.exceptions import (
    SlotConflictError,
    StorageTransientError,
    TransactionConflictError,
)
from reservation_arbiter.stores.base import BaseIntervalStore, HealthCheckResult
from reservation_arbiter.stores.memory import MemoryIntervalStore
from reservation_arbiter.types.reservation import Reservation

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def booking(rid, start_h=0.0, end_h=1.0):
    return Reservation(
        id=rid,
        resource_id="oven-1",
        owner_id="ada",
        start=T0 + timedelta(hours=start_h),
        end=T0 + timedelta(hours=end_h),
        created_at=T0,
    )


class TestHealthCheckResult:
    def test_optional_fields_default_none(self):
        result = HealthCheckResult(healthy=True, store_type="memory", namespace="ns")
        assert result.error is None
        assert result.metadata is None


class TestBaseIntervalStore:
    def test_cannot_instantiate_abstract(self):
        with pytest.raises(TypeError):
            BaseIntervalStore()  # type: ignore[abstract]

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self):
        store = MemoryIntervalStore()
        with patch.object(store, "close", new=AsyncMock()) as close:
            async with store as entered:
                assert entered is store
            close.assert_awaited_once()


class TestRunTransaction:
    @pytest.fixture
    def store(self):
        return MemoryIntervalStore()

    @pytest.mark.asyncio
    async def test_returns_work_result_after_commit(self, store):
        async def work(tx):
            await tx.insert(booking("a"))
            return "done"

        assert await store.run_transaction(work) == "done"
        assert await store.get("a") == booking("a")

    @pytest.mark.asyncio
    async def test_retries_on_contention(self, store):
        calls = []
        retries = []

        async def work(tx):
            calls.append(1)
            if len(calls) == 1:
                raise TransactionConflictError("simulated")
            await tx.insert(booking("a"))

        await store.run_transaction(
            work, backoff_base=0, on_retry=lambda reason, n: retries.append((reason, n))
        )
        assert len(calls) == 2
        assert retries == [("contention", 1)]
        assert await store.get("a") is not None

    @pytest.mark.asyncio
    async def test_transient_failure_retried_with_reason(self, store):
        retries = []
        attempts = iter([StorageTransientError("connection reset"), None])

        async def work(tx):
            error = next(attempts)
            if error is not None:
                raise error
            return 1

        result = await store.run_transaction(
            work, backoff_base=0, on_retry=lambda reason, n: retries.append(reason)
        )
        assert result == 1
        assert retries == ["transient"]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, store):
        work = AsyncMock(side_effect=TransactionConflictError("always"))

        with pytest.raises(StorageTransientError) as exc_info:
            await store.run_transaction(work, max_retries=2, backoff_base=0)

        assert work.await_count == 3
        assert exc_info.value.attempts == 3
        assert not isinstance(exc_info.value, TransactionConflictError)
        assert isinstance(exc_info.value.__cause__, TransactionConflictError)

    @pytest.mark.asyncio
    async def test_zero_retries(self, store):
        work = AsyncMock(side_effect=StorageTransientError("down"))
        with pytest.raises(StorageTransientError):
            await store.run_transaction(work, max_retries=0, backoff_base=0)
        assert work.await_count == 1

    @pytest.mark.asyncio
    async def test_commit_conflict_retries_whole_work(self, store):
        original_commit = store._commit
        calls = []

        async def work(tx):
            calls.append(1)
            await tx.insert(booking(f"r{len(calls)}"))

        # Fail the first commit, let the second go through
        outcomes = [TransactionConflictError("lost race")]

        async def first_commit_fails(tx):
            if outcomes:
                raise outcomes.pop()
            await original_commit(tx)

        with patch.object(store, "_commit", side_effect=first_commit_fails):
            await store.run_transaction(work, backoff_base=0)

        assert len(calls) == 2
        assert await store.get("r1") is None
        assert await store.get("r2") is not None

    @pytest.mark.asyncio
    async def test_domain_error_on_consistent_reads_propagates(self, store):
        work = AsyncMock(side_effect=SlotConflictError("oven-1", ["x"]))
        retries = []

        with pytest.raises(SlotConflictError):
            await store.run_transaction(
                work, on_retry=lambda reason, n: retries.append(reason)
            )
        assert work.await_count == 1
        assert retries == []

    @pytest.mark.asyncio
    async def test_domain_error_on_invalidated_reads_is_retried(self, store):
        """A rejection based on data a concurrent commit changed is re-evaluated."""

        async def seed(tx):
            await tx.insert(booking("blocker", 0, 2))

        await store.run_transaction(seed)
        attempts = []

        async def work(tx):
            attempts.append(1)
            candidates = await tx.query_overlap_candidates("oven-1", T0)
            if len(attempts) == 1:
                # Concurrent cancellation commits after our read
                async def cancel(other):
                    await other.delete("blocker")

                await store.run_transaction(cancel)
            if candidates:
                raise SlotConflictError("oven-1", [r.id for r in candidates])
            await tx.insert(booking("mine", 0, 1))
            return "booked"

        assert await store.run_transaction(work, backoff_base=0) == "booked"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_backoff_sleeps_between_attempts(self, store):
        work = AsyncMock(side_effect=[TransactionConflictError("x"), "ok"])
        with patch("reservation_arbiter.stores.base.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await store.run_transaction(work, backoff_base=0.01) == "ok"
        sleep.assert_awaited_once()
        (delay,) = sleep.await_args.args
        assert 0.01 <= delay <= 0.02

    @pytest.mark.asyncio
    async def test_cancellation_leaves_no_writes(self, store):
        started = asyncio.Event()

        async def work(tx):
            await tx.insert(booking("a"))
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(store.run_transaction(work))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert await store.get("a") is None
        assert await store.list_reservations("oven-1") == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_propagates_without_retry(self, store):
        work = AsyncMock(side_effect=RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            await store.run_transaction(work)
        assert work.await_count == 1
