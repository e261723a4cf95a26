# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Per-user active-booking quota.

A reservation is active while its end has not passed (``end >= now``).

Rejections are decided only inside the create transaction. A count read
outside it may include a reservation that was cancelled meanwhile, so it is
exposed for display and never used to reject a request.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime

from .config import QuotaScope
from .exceptions import QuotaExceededError
from .stores.base import BaseIntervalStore, StoreTransaction
from .types.reservation import Reservation
from .types.resource import Resource


class QuotaEnforcer:
    """
    Counts a user's active reservations and rejects requests beyond the ceiling.

    Args:
        max_active: Maximum number of active reservations per user
        scope: Which reservations count towards the ceiling
    """

    def __init__(
        self, max_active: int, scope: QuotaScope = QuotaScope.ALL_RESOURCES
    ) -> None:
        if max_active < 1:
            raise ValueError("max_active must be at least 1")
        self.max_active = max_active
        self.scope = scope

    def active_count(
        self,
        reservations: Iterable[Reservation],
        user_id: str,
        now: datetime,
        resources: Mapping[str, Resource | None] | None = None,
    ) -> int:
        """
        Count the user's active reservations among ``reservations``.

        Under ``QuotaScope.ACTIVE_RESOURCES_ONLY``, reservations on a resource
        that ``resources`` reports as under maintenance are skipped. Resources
        missing from the mapping count as active.
        """
        count = 0
        for reservation in reservations:
            if reservation.owner_id != user_id or not reservation.is_active(now):
                continue
            if self.scope is QuotaScope.ACTIVE_RESOURCES_ONLY and resources:
                resource = resources.get(reservation.resource_id)
                if resource is not None and not resource.is_active:
                    continue
            count += 1
        return count

    def check_quota(
        self,
        reservations: Iterable[Reservation],
        user_id: str,
        now: datetime,
        resources: Mapping[str, Resource | None] | None = None,
    ) -> int:
        """
        Raise if the user cannot take another reservation.

        Returns:
            The active count that was checked

        Raises:
            QuotaExceededError: If the count has reached ``max_active``
        """
        count = self.active_count(reservations, user_id, now, resources)
        if count >= self.max_active:
            raise QuotaExceededError(user_id, count, self.max_active)
        return count

    async def advisory_count(
        self, store: BaseIntervalStore, user_id: str, now: datetime
    ) -> int:
        """Active count from a non-transactional, possibly stale snapshot."""
        reservations = await store.list_user_reservations(
            user_id, ending_at_or_after=now
        )
        resources = None
        if self.scope is QuotaScope.ACTIVE_RESOURCES_ONLY:
            resources = {
                rid: await store.get_resource(rid)
                for rid in {r.resource_id for r in reservations}
            }
        return self.active_count(reservations, user_id, now, resources)

    async def enforce(self, tx: StoreTransaction, user_id: str, now: datetime) -> int:
        """Authoritative check against the transaction's snapshot."""
        reservations = await tx.query_user_reservations(user_id, now)
        resources = None
        if self.scope is QuotaScope.ACTIVE_RESOURCES_ONLY:
            resources = {
                rid: await tx.get_resource(rid)
                for rid in {r.resource_id for r in reservations}
            }
        return self.check_quota(reservations, user_id, now, resources)


__all__ = ["QuotaEnforcer"]
