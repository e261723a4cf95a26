# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
ReservationArbitrator: atomic create, update and cancel of reservations.

Each mutating operation runs as one store transaction. The transaction body
reads everything its decision depends on (existing bookings on the resource,
the user's active bookings, the resource state and the owner's profile),
decides, and buffers its write. The store commits the write only if none of
those reads changed in the meantime; otherwise the body runs again from
scratch. Log lines and metrics are emitted once the transaction has
resolved, so a retried body leaves no trace.

Time and caller identity are explicit: every operation accepts ``now`` (the
injected clock is only the default) and the acting user's id and privilege.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from .authorization import authorize
from .config import ArbitratorConfig, MaintenancePolicy
from .conflict import find_conflicts
from .exceptions import (
    ArbitrationError,
    InvalidIntervalError,
    ReservationNotFoundError,
    ResourceUnavailableError,
    SlotConflictError,
    StorageTransientError,
)
from .observability.collector import ArbitrationMetrics, outcome_for
from .observability.constants import (
    OUTCOME_CANCELLED,
    OUTCOME_COMMITTED,
    OUTCOME_ERROR,
)
from .quota import QuotaEnforcer
from .stores.base import BaseIntervalStore, StoreTransaction
from .types.reservation import Reservation, compose_label, ensure_aware, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


class ReservationArbitrator:
    """
    Decides whether proposed reservations may be granted and commits them.

    Guarantees, for every resource, that no two stored reservations overlap;
    for every user, that a new booking is only accepted while they hold fewer
    than ``max_active_bookings_per_user`` active ones; that no booking is
    longer than ``max_booking_duration_hours``; and that only privileged
    actors, or owners within the edit grace period, change or cancel a
    booking.

    Args:
        store: Interval store holding reservations, resources and profiles
        config: Arbitrator configuration (defaults to ArbitratorConfig())
        clock: Returns the current timezone-aware instant when an operation
            is called without ``now``
        metrics: Metrics collector (defaults to one with a private registry)

    Example:
        >>> store = MemoryIntervalStore()
        >>> arbitrator = ReservationArbitrator(store)
        >>> booking = await arbitrator.create_reservation(
        ...     "oven-1", "ada", start, end, "Annealing run"
        ... )
    """

    def __init__(
        self,
        store: BaseIntervalStore,
        config: ArbitratorConfig | None = None,
        clock: Clock | None = None,
        metrics: ArbitrationMetrics | None = None,
    ):
        self.store = store
        self.config = config if config is not None else ArbitratorConfig()
        self.metrics = metrics if metrics is not None else ArbitrationMetrics()
        self._clock = clock if clock is not None else utc_now
        self.quota = QuotaEnforcer(
            self.config.max_active_bookings_per_user, self.config.quota_scope
        )

        logger.debug(
            f"ReservationArbitrator initialized with {store.store_type} store "
            f"(quota={self.config.max_active_bookings_per_user}, "
            f"max_hours={self.config.max_booking_duration_hours}, "
            f"grace_ms={self.config.edit_grace_period_ms})"
        )

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _resolve_now(self, now: datetime | None) -> datetime:
        return ensure_aware(now if now is not None else self._clock(), "now")

    def _validate_interval(
        self, start: datetime, end: datetime
    ) -> tuple[datetime, datetime]:
        """
        Normalise and bound a requested interval.

        Raises:
            InvalidIntervalError: On naive timestamps, ``start >= end`` or a
                duration above the configured maximum
        """
        try:
            start = ensure_aware(start, "start")
            end = ensure_aware(end, "end")
        except ValueError as e:
            raise InvalidIntervalError(str(e), start, end) from e
        if start >= end:
            raise InvalidIntervalError("start must be before end", start, end)
        if end - start > self.config.max_booking_duration:
            raise InvalidIntervalError(
                f"Bookings may last at most "
                f"{self.config.max_booking_duration_hours} hours",
                start,
                end,
            )
        return start, end

    async def _ensure_bookable(self, tx: StoreTransaction, resource_id: str) -> None:
        """Reject resources under maintenance when the policy blocks them."""
        if self.config.maintenance_policy is not MaintenancePolicy.BLOCK:
            return
        resource = await tx.get_resource(resource_id)
        if resource is not None and not resource.is_active:
            raise ResourceUnavailableError(resource_id, resource.state.value)

    async def _ensure_free(
        self,
        tx: StoreTransaction,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_id: str | None = None,
    ) -> None:
        candidates = await tx.query_overlap_candidates(resource_id, start)
        conflicts = find_conflicts(start, end, candidates, exclude_id=exclude_id)
        if conflicts:
            raise SlotConflictError(resource_id, [r.id for r in conflicts])

    async def _display_name(
        self, tx: StoreTransaction, user_id: str, *fallbacks: str | None
    ) -> str:
        """Profile name, else the first non-empty fallback, else the unknown-user name."""
        profile = await tx.get_user_profile(user_id)
        if profile is not None and profile.display_name:
            return profile.display_name
        for name in fallbacks:
            if name:
                return name
        return self.config.unknown_user_name

    async def _fetch(self, tx: StoreTransaction, reservation_id: str) -> Reservation:
        reservation = await tx.get(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def _observe(
        self, operation: str, body: Callable[[], Awaitable[T]]
    ) -> T:
        """Run ``body`` and record its terminal outcome and latency."""
        started = time.perf_counter()
        try:
            result = await body()
        except StorageTransientError as e:
            self.metrics.record_outcome(
                operation, outcome_for(e), time.perf_counter() - started
            )
            logger.error(f"{operation} failed on storage: {e}")
            raise
        except ArbitrationError as e:
            self.metrics.record_outcome(
                operation, outcome_for(e), time.perf_counter() - started
            )
            logger.warning(f"{operation} rejected: {e}")
            raise
        except asyncio.CancelledError:
            self.metrics.record_outcome(
                operation, OUTCOME_CANCELLED, time.perf_counter() - started
            )
            raise
        except Exception:
            self.metrics.record_outcome(
                operation, OUTCOME_ERROR, time.perf_counter() - started
            )
            logger.exception(f"{operation} failed unexpectedly")
            raise
        self.metrics.record_outcome(
            operation, OUTCOME_COMMITTED, time.perf_counter() - started
        )
        return result

    async def _transact(self, work: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        return await self.store.run_transaction(
            work,
            max_retries=self.config.max_transaction_retries,
            backoff_base=self.config.retry_backoff_base,
            on_retry=self.metrics.record_retry,
        )

    # ==========================================================================
    # Mutating Operations
    # ==========================================================================

    async def create_reservation(
        self,
        resource_id: str,
        user_id: str,
        start: datetime,
        end: datetime,
        label: str,
        *,
        user_display_name: str | None = None,
        now: datetime | None = None,
    ) -> Reservation:
        """
        Book ``[start, end)`` on a resource for a user.

        Args:
            resource_id: Resource to book
            user_id: Booking owner
            start: Inclusive start instant (timezone-aware)
            end: Exclusive end instant (timezone-aware)
            label: Title of the booking; stored as ``"{label} (by {name})"``
            user_display_name: Name to use when the user has no profile
            now: Current instant (defaults to the arbitrator's clock)

        Returns:
            The committed reservation

        Raises:
            InvalidIntervalError: If the interval is malformed or too long
            QuotaExceededError: If the user already holds the maximum of active bookings
            ResourceUnavailableError: If the resource is under maintenance and
                the maintenance policy blocks bookings
            SlotConflictError: If the interval overlaps an existing booking
            StorageTransientError: If the store failed or contention persisted
        """

        async def body() -> Reservation:
            nonlocal start, end
            start, end = self._validate_interval(start, end)
            current = self._resolve_now(now)

            async def work(tx: StoreTransaction) -> Reservation:
                await self._ensure_bookable(tx, resource_id)
                await self.quota.enforce(tx, user_id, current)
                await self._ensure_free(tx, resource_id, start, end)
                name = await self._display_name(tx, user_id, user_display_name)
                reservation = Reservation(
                    resource_id=resource_id,
                    owner_id=user_id,
                    start=start,
                    end=end,
                    label=compose_label(label, name),
                    owner_name=name,
                    created_at=current,
                )
                await tx.insert(reservation)
                return reservation

            return await self._transact(work)

        reservation = await self._observe("create", body)
        logger.info(
            f"Created reservation {reservation.id} on {resource_id} for {user_id} "
            f"[{reservation.start.isoformat()}, {reservation.end.isoformat()})"
        )
        return reservation

    async def update_reservation(
        self,
        reservation_id: str,
        actor_id: str,
        resource_id: str,
        start: datetime,
        end: datetime,
        label: str,
        *,
        actor_is_privileged: bool = False,
        now: datetime | None = None,
    ) -> Reservation:
        """
        Move or retitle an existing reservation.

        Besides start, end and label, an edit may also change the resource:
        the conflict check runs against ``resource_id`` (ignoring the
        reservation itself) and the stored reservation moves with it, so it
        never lands on a calendar that was not checked. Pass the current
        ``resource_id`` to edit in place. The label is recomposed with the
        owner's display name, whoever edits it.

        Returns:
            The reservation as committed

        Raises:
            InvalidIntervalError: If the new interval is malformed or too long
            ReservationNotFoundError: If the reservation does not exist
            ForbiddenError: If the actor is neither owner nor privileged
            GracePeriodExpiredError: If the owner's edit window has closed
            ResourceUnavailableError: If moving onto a blocked resource
            SlotConflictError: If the new interval overlaps another booking
            StorageTransientError: If the store failed or contention persisted
        """

        async def body() -> Reservation:
            nonlocal start, end
            start, end = self._validate_interval(start, end)
            current = self._resolve_now(now)

            async def work(tx: StoreTransaction) -> Reservation:
                existing = await self._fetch(tx, reservation_id)
                authorize(
                    actor_id,
                    actor_is_privileged,
                    existing,
                    current,
                    self.config.edit_grace_period,
                )
                if resource_id != existing.resource_id:
                    await self._ensure_bookable(tx, resource_id)
                await self._ensure_free(
                    tx, resource_id, start, end, exclude_id=reservation_id
                )
                name = await self._display_name(
                    tx, existing.owner_id, existing.owner_name
                )
                return await tx.update(
                    reservation_id,
                    resource_id=resource_id,
                    start=start,
                    end=end,
                    label=compose_label(label, name),
                    owner_name=name,
                )

            return await self._transact(work)

        reservation = await self._observe("update", body)
        logger.info(
            f"Updated reservation {reservation_id} by {actor_id}: {resource_id} "
            f"[{reservation.start.isoformat()}, {reservation.end.isoformat()})"
        )
        return reservation

    async def cancel_reservation(
        self,
        reservation_id: str,
        actor_id: str,
        *,
        actor_is_privileged: bool = False,
        now: datetime | None = None,
    ) -> Reservation:
        """
        Delete a reservation.

        Returns:
            The reservation that was removed

        Raises:
            ReservationNotFoundError: If the reservation does not exist
            ForbiddenError: If the actor is neither owner nor privileged
            GracePeriodExpiredError: If the owner's edit window has closed
            StorageTransientError: If the store failed or contention persisted
        """

        async def body() -> Reservation:
            current = self._resolve_now(now)

            async def work(tx: StoreTransaction) -> Reservation:
                existing = await self._fetch(tx, reservation_id)
                authorize(
                    actor_id,
                    actor_is_privileged,
                    existing,
                    current,
                    self.config.edit_grace_period,
                )
                return await tx.delete(reservation_id)

            return await self._transact(work)

        reservation = await self._observe("cancel", body)
        logger.info(f"Cancelled reservation {reservation_id} by {actor_id}")
        return reservation

    # ==========================================================================
    # Read-only Operations
    # ==========================================================================

    async def list_reservations(self, resource_id: str) -> list[Reservation]:
        """All reservations on a resource ordered by start. No conflict logic."""
        return await self.store.list_reservations(resource_id)

    async def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self.store.get(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def list_user_reservations(
        self,
        user_id: str,
        *,
        active_only: bool = True,
        now: datetime | None = None,
    ) -> list[Reservation]:
        """A user's reservations ordered by start; by default only those not yet ended."""
        if not active_only:
            return await self.store.list_user_reservations(user_id)
        return await self.store.list_user_reservations(
            user_id, ending_at_or_after=self._resolve_now(now)
        )

    async def remaining_quota(self, user_id: str, *, now: datetime | None = None) -> int:
        """
        Advisory number of further bookings the user may make.

        Read outside any transaction, so it may lag behind concurrent
        requests. Creation does not consult it.
        """
        active = await self.quota.advisory_count(
            self.store, user_id, self._resolve_now(now)
        )
        return max(0, self.quota.max_active - active)


__all__ = ["Clock", "ReservationArbitrator"]
