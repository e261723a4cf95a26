# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Interval Store for Reservation Arbiter

This module provides the abstract store and transaction classes that every
storage backend implements.

Features:
- Optimistic, serializable transactions scoped to one logical operation
- Read-your-writes within a transaction
- Bounded retry of the whole transaction body on write contention
- Non-transactional reads for listing and administrative seeding
"""

import abc
import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from typing_extensions import Self

from ..exceptions import (
    ArbitrationError,
    StorageTransientError,
    TransactionConflictError,
)
from ..types.reservation import Reservation
from ..types.resource import Resource, UserProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransactionWork = Callable[["StoreTransaction"], Awaitable[T]]
RetryCallback = Callable[[str, int], None]


@dataclass
class HealthCheckResult:
    """
    Structured health check result for store monitoring.

    Attributes:
        healthy: Whether the store is operational
        store_type: Type of store (e.g., 'redis', 'memory')
        namespace: Store namespace
        error: Error message if unhealthy
        metadata: Additional store-specific information
    """

    healthy: bool
    store_type: str
    namespace: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


class StoreTransaction(abc.ABC):
    """
    A single optimistic transaction against an interval store.

    Reads are tracked so the store can detect, at commit, whether anything
    the transaction relied on has changed. Writes are buffered locally and
    only become visible to other transactions once the store commits them
    atomically. Reads issued after a write in the same transaction observe
    that write.
    """

    @abc.abstractmethod
    async def get(self, reservation_id: str) -> Reservation | None:
        """Fetch one reservation, or None if it does not exist."""
        pass

    @abc.abstractmethod
    async def query_overlap_candidates(
        self, resource_id: str, after: datetime
    ) -> list[Reservation]:
        """
        Return every reservation on ``resource_id`` whose end is strictly
        after ``after``.

        This is a superset of the reservations that overlap an interval
        starting at ``after``; the conflict detector refines it.
        """
        pass

    @abc.abstractmethod
    async def query_user_reservations(
        self, user_id: str, ending_at_or_after: datetime
    ) -> list[Reservation]:
        """Return the user's reservations whose end is at or after the instant."""
        pass

    @abc.abstractmethod
    async def get_resource(self, resource_id: str) -> Resource | None:
        pass

    @abc.abstractmethod
    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        pass

    @abc.abstractmethod
    async def insert(self, reservation: Reservation) -> None:
        """Buffer the insertion of a new reservation."""
        pass

    @abc.abstractmethod
    async def update(self, reservation_id: str, **fields: Any) -> Reservation:
        """
        Buffer an update of an existing reservation.

        Returns:
            The reservation as it will be stored

        Raises:
            ReservationNotFoundError: If the reservation does not exist
        """
        pass

    @abc.abstractmethod
    async def delete(self, reservation_id: str) -> Reservation:
        """
        Buffer the deletion of a reservation.

        Returns:
            The reservation being removed

        Raises:
            ReservationNotFoundError: If the reservation does not exist
        """
        pass


class BaseIntervalStore(abc.ABC):
    """
    An abstract base class for durable, transactional reservation storage.

    Concrete stores provide transaction begin/commit/validate/release hooks;
    this class owns the retry loop so every backend retries the same way.
    Subclasses must implement all abstract methods.
    """

    store_type: str = "base"

    def __init__(self, namespace: str = "reservation_arbiter"):
        """
        Initialize the store with a namespace for isolation.

        Args:
            namespace: Namespace for isolating data across different instances
        """
        self.namespace = namespace

    # ==========================================================================
    # Transactions
    # ==========================================================================

    @abc.abstractmethod
    async def _begin(self) -> StoreTransaction:
        """Open a new transaction."""
        pass

    @abc.abstractmethod
    async def _commit(self, tx: StoreTransaction) -> None:
        """
        Atomically validate the transaction's reads and apply its writes.

        Raises:
            TransactionConflictError: If any tracked read was invalidated
            StorageTransientError: On backend connectivity failures
        """
        pass

    @abc.abstractmethod
    async def _validate(self, tx: StoreTransaction) -> bool:
        """Return True if none of the transaction's reads have been invalidated."""
        pass

    @abc.abstractmethod
    async def _release(self, tx: StoreTransaction) -> None:
        """Release resources held by the transaction. Must be idempotent."""
        pass

    async def run_transaction(
        self,
        work: TransactionWork[T],
        *,
        max_retries: int = 2,
        backoff_base: float = 0.01,
        on_retry: RetryCallback | None = None,
    ) -> T:
        """
        Run ``work`` inside a transaction, retrying on contention.

        ``work`` receives the transaction and must confine all its effects to
        it: a retry re-executes it from scratch against fresh reads.

        A domain error raised by ``work`` aborts the transaction. Before it
        propagates, the transaction's reads are validated; if they were
        invalidated by a concurrent commit the rejection may rest on stale
        data, so the work is retried instead.

        Args:
            work: Coroutine function executed with the open transaction
            max_retries: Extra attempts after the first one
            backoff_base: Base delay in seconds for jittered exponential backoff
            on_retry: Optional callback invoked with (reason, attempt) before a retry

        Returns:
            The value returned by ``work`` once the transaction has committed

        Raises:
            StorageTransientError: If contention or backend failures persist
                past ``max_retries``
            ArbitrationError: Any domain error raised by ``work`` on a
                consistent snapshot
        """
        attempt = 0
        while True:
            attempt += 1
            tx = await self._begin()
            try:
                try:
                    result = await work(tx)
                except StorageTransientError:
                    raise
                except ArbitrationError:
                    if await self._validate(tx):
                        raise
                    raise TransactionConflictError(
                        "Reads invalidated before rejection"
                    ) from None
                await self._commit(tx)
                logger.debug(
                    f"Transaction committed on attempt {attempt} ({self.store_type})"
                )
                return result
            except TransactionConflictError as e:
                reason = "contention"
                last_error: StorageTransientError = e
            except StorageTransientError as e:
                reason = "transient"
                last_error = e
            finally:
                await self._release(tx)

            if attempt > max_retries:
                logger.warning(
                    f"Transaction gave up after {attempt} attempts ({reason}): "
                    f"{last_error}"
                )
                raise StorageTransientError(
                    f"Transaction failed after {attempt} attempts: {last_error}",
                    attempts=attempt,
                ) from last_error

            logger.debug(f"Retrying transaction after {reason} (attempt {attempt})")
            if on_retry is not None:
                on_retry(reason, attempt)
            if backoff_base > 0:
                delay = backoff_base * (2 ** (attempt - 1))
                # Jitter prevents contending writers from retrying in lockstep
                delay += random.uniform(0, delay)  # nosec B311 # noqa: S311
                await asyncio.sleep(delay)

    # ==========================================================================
    # Non-transactional Reads
    # ==========================================================================

    @abc.abstractmethod
    async def get(self, reservation_id: str) -> Reservation | None:
        pass

    @abc.abstractmethod
    async def list_reservations(self, resource_id: str) -> list[Reservation]:
        """All reservations on a resource, ordered by start."""
        pass

    @abc.abstractmethod
    async def list_user_reservations(
        self, user_id: str, ending_at_or_after: datetime | None = None
    ) -> list[Reservation]:
        """A user's reservations ordered by start, optionally only those not yet ended."""
        pass

    @abc.abstractmethod
    async def get_resource(self, resource_id: str) -> Resource | None:
        pass

    @abc.abstractmethod
    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        pass

    # ==========================================================================
    # Administrative Writes
    # ==========================================================================

    @abc.abstractmethod
    async def save_resource(self, resource: Resource) -> None:
        """Create or replace a resource (roster management collaborator)."""
        pass

    @abc.abstractmethod
    async def save_user_profile(self, profile: UserProfile) -> None:
        """Create or replace a user profile (identity collaborator)."""
        pass

    # ==========================================================================
    # Health and Maintenance
    # ==========================================================================

    @abc.abstractmethod
    async def clear(self) -> None:
        """Remove everything stored under this namespace."""
        pass

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        """Clean up store resources."""
        pass

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()
