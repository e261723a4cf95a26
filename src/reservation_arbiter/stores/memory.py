# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryIntervalStore for Reservation Arbiter

This module provides an in-memory store implementation that doesn't require Redis.
Perfect for testing, development, and single-process applications.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..exceptions import (
    ConfigurationError,
    ReservationNotFoundError,
    TransactionConflictError,
)
from ..types.reservation import Reservation
from ..types.resource import Resource, UserProfile
from .base import BaseIntervalStore, HealthCheckResult, StoreTransaction

logger = logging.getLogger(__name__)


def _reservation_key(reservation_id: str) -> str:
    return f"reservation:{reservation_id}"


def _resource_index_key(resource_id: str) -> str:
    return f"resource_index:{resource_id}"


def _user_index_key(user_id: str) -> str:
    return f"user_index:{user_id}"


def _resource_key(resource_id: str) -> str:
    return f"resource:{resource_id}"


def _profile_key(user_id: str) -> str:
    return f"profile:{user_id}"


class MemoryTransaction(StoreTransaction):
    """
    Optimistic transaction over a MemoryIntervalStore.

    Every read records the version of each key it consulted; the first
    observed version wins. Writes are kept in ``_writes`` (reservation id to
    new value, None for deletion) until the store commits them.
    """

    def __init__(self, store: "MemoryIntervalStore") -> None:
        self._store = store
        self._reads: dict[str, int] = {}
        self._writes: dict[str, Reservation | None] = {}
        self.closed = False

    def _track(self, key: str) -> None:
        self._reads.setdefault(key, self._store._versions.get(key, 0))

    def _overlay(
        self, stored: list[Reservation], keep: Callable[[Reservation], bool]
    ) -> list[Reservation]:
        """Merge buffered writes over stored reservations, filtered by ``keep``."""
        merged = {r.id: r for r in stored if r.id not in self._writes}
        for reservation_id, value in self._writes.items():
            if value is not None and keep(value):
                merged[reservation_id] = value
        return sorted(merged.values(), key=lambda r: (r.start, r.id))

    async def get(self, reservation_id: str) -> Reservation | None:
        if reservation_id in self._writes:
            return self._writes[reservation_id]
        async with self._store._lock:
            self._track(_reservation_key(reservation_id))
            return self._store._reservations.get(reservation_id)

    async def query_overlap_candidates(
        self, resource_id: str, after: datetime
    ) -> list[Reservation]:
        async with self._store._lock:
            self._track(_resource_index_key(resource_id))
            stored = []
            for reservation_id in self._store._by_resource.get(resource_id, ()):
                self._track(_reservation_key(reservation_id))
                reservation = self._store._reservations[reservation_id]
                if reservation.end > after:
                    stored.append(reservation)
        return self._overlay(
            stored, lambda r: r.resource_id == resource_id and r.end > after
        )

    async def query_user_reservations(
        self, user_id: str, ending_at_or_after: datetime
    ) -> list[Reservation]:
        async with self._store._lock:
            self._track(_user_index_key(user_id))
            stored = []
            for reservation_id in self._store._by_user.get(user_id, ()):
                self._track(_reservation_key(reservation_id))
                reservation = self._store._reservations[reservation_id]
                if reservation.end >= ending_at_or_after:
                    stored.append(reservation)
        return self._overlay(
            stored,
            lambda r: r.owner_id == user_id and r.end >= ending_at_or_after,
        )

    async def get_resource(self, resource_id: str) -> Resource | None:
        async with self._store._lock:
            self._track(_resource_key(resource_id))
            return self._store._resources.get(resource_id)

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        async with self._store._lock:
            self._track(_profile_key(user_id))
            return self._store._profiles.get(user_id)

    async def insert(self, reservation: Reservation) -> None:
        # Tracking the id guards against a concurrent insert reusing it
        if await self.get(reservation.id) is not None:
            raise ValueError(f"Reservation {reservation.id} already exists")
        self._writes[reservation.id] = reservation

    async def update(self, reservation_id: str, **fields: Any) -> Reservation:
        current = await self.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)
        updated = current.model_copy(update=fields)
        self._writes[reservation_id] = updated
        return updated

    async def delete(self, reservation_id: str) -> Reservation:
        current = await self.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)
        self._writes[reservation_id] = None
        return current


class MemoryIntervalStore(BaseIntervalStore):
    """
    An in-memory interval store.

    This store provides a simple, Redis-free implementation suitable for:
    - Testing and development
    - Single-process applications
    - Scenarios where distributed state is not needed

    Key Features:
    - Pure in-memory dict-based storage with per-resource and per-user indexes
    - Optimistic transactions validated against per-key version counters
    - Async-safe operations using asyncio.Lock
    - Validation and application of a commit happen without yielding

    Note:
        This store is NOT suitable for:
        - Multi-process applications
        - Distributed systems
        - Deployments that must survive a process restart
    """

    store_type = "memory"

    def __init__(self, namespace: str = "reservation_arbiter_memory") -> None:
        super().__init__(namespace)

        self._reservations: dict[str, Reservation] = {}
        self._by_resource: dict[str, set[str]] = {}
        self._by_user: dict[str, set[str]] = {}
        self._resources: dict[str, Resource] = {}
        self._profiles: dict[str, UserProfile] = {}

        # Monotonic per-key versions; an absent key reads as version 0.
        # Keys whose data is gone are dropped once no transaction is open.
        self._versions: dict[str, int] = {}
        self._orphaned: set[str] = set()
        self._open_transactions = 0

        self._commits = 0
        self._conflicts = 0

        self._lock = asyncio.Lock()

        logger.debug(f"Initialized MemoryIntervalStore with namespace '{namespace}'")

    # Transactions

    async def _begin(self) -> StoreTransaction:
        async with self._lock:
            self._open_transactions += 1
        return MemoryTransaction(self)

    def _own(self, tx: StoreTransaction) -> MemoryTransaction:
        if not isinstance(tx, MemoryTransaction) or tx._store is not self:
            raise ConfigurationError(
                f"Transaction {tx!r} was not opened by this MemoryIntervalStore"
            )
        return tx

    def _stale_keys(self, tx: MemoryTransaction) -> list[str]:
        """Keys whose version moved since the transaction read them.

        IMPORTANT: Must be called while holding self._lock.
        """
        return [
            key
            for key, version in tx._reads.items()
            if self._versions.get(key, 0) != version
        ]

    def _bump(self, *keys: str) -> None:
        for key in keys:
            self._versions[key] = self._versions.get(key, 0) + 1

    def _key_exists(self, key: str) -> bool:
        kind, _, ident = key.partition(":")
        if kind == "reservation":
            return ident in self._reservations
        if kind == "resource_index":
            return ident in self._by_resource
        if kind == "user_index":
            return ident in self._by_user
        if kind == "resource":
            return ident in self._resources
        return ident in self._profiles

    def _prune_versions(self) -> None:
        """Forget versions of keys whose data is gone.

        Only safe with no transaction open, since an open one may hold a
        read of the old version. IMPORTANT: Must be called while holding
        self._lock.
        """
        if self._open_transactions:
            return
        for key in self._orphaned:
            if not self._key_exists(key):
                self._versions.pop(key, None)
        self._orphaned.clear()

    @staticmethod
    def _discard_from_index(
        index: dict[str, set[str]], owner: str, reservation_id: str
    ) -> bool:
        """Remove an id from an index set; True if the set emptied."""
        members = index.get(owner)
        if members is None:
            return False
        members.discard(reservation_id)
        if members:
            return False
        del index[owner]
        return True

    def _apply_locked(self, reservation_id: str, value: Reservation | None) -> None:
        """Apply one buffered write and bump every affected version.

        IMPORTANT: Must be called while holding self._lock.
        """
        old = self._reservations.pop(reservation_id, None)
        if old is not None:
            resource_key = _resource_index_key(old.resource_id)
            user_key = _user_index_key(old.owner_id)
            if self._discard_from_index(
                self._by_resource, old.resource_id, reservation_id
            ):
                self._orphaned.add(resource_key)
            if self._discard_from_index(self._by_user, old.owner_id, reservation_id):
                self._orphaned.add(user_key)
            self._bump(resource_key, user_key)
        if value is not None:
            self._reservations[reservation_id] = value
            self._by_resource.setdefault(value.resource_id, set()).add(reservation_id)
            self._by_user.setdefault(value.owner_id, set()).add(reservation_id)
            self._bump(
                _resource_index_key(value.resource_id),
                _user_index_key(value.owner_id),
            )
        else:
            self._orphaned.add(_reservation_key(reservation_id))
        self._bump(_reservation_key(reservation_id))

    async def _commit(self, tx: StoreTransaction) -> None:
        tx = self._own(tx)
        async with self._lock:
            stale = self._stale_keys(tx)
            if stale:
                self._conflicts += 1
                raise TransactionConflictError(
                    f"Concurrent modification of {', '.join(sorted(stale))}"
                )
            for reservation_id, value in tx._writes.items():
                self._apply_locked(reservation_id, value)
            if tx._writes:
                self._commits += 1

    async def _validate(self, tx: StoreTransaction) -> bool:
        tx = self._own(tx)
        async with self._lock:
            return not self._stale_keys(tx)

    async def _release(self, tx: StoreTransaction) -> None:
        tx = self._own(tx)
        if tx.closed:
            return
        tx.closed = True
        async with self._lock:
            self._open_transactions -= 1
            self._prune_versions()

    # Non-transactional Reads

    async def get(self, reservation_id: str) -> Reservation | None:
        async with self._lock:
            return self._reservations.get(reservation_id)

    async def list_reservations(self, resource_id: str) -> list[Reservation]:
        async with self._lock:
            found = [
                self._reservations[rid] for rid in self._by_resource.get(resource_id, ())
            ]
        return sorted(found, key=lambda r: (r.start, r.id))

    async def list_user_reservations(
        self, user_id: str, ending_at_or_after: datetime | None = None
    ) -> list[Reservation]:
        async with self._lock:
            found = [
                self._reservations[rid]
                for rid in self._by_user.get(user_id, ())
                if ending_at_or_after is None
                or self._reservations[rid].end >= ending_at_or_after
            ]
        return sorted(found, key=lambda r: (r.start, r.id))

    async def get_resource(self, resource_id: str) -> Resource | None:
        async with self._lock:
            return self._resources.get(resource_id)

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        async with self._lock:
            return self._profiles.get(user_id)

    # Administrative Writes

    async def save_resource(self, resource: Resource) -> None:
        async with self._lock:
            self._resources[resource.id] = resource
            self._bump(_resource_key(resource.id))

    async def save_user_profile(self, profile: UserProfile) -> None:
        async with self._lock:
            self._profiles[profile.id] = profile
            self._bump(_profile_key(profile.id))

    # Health and Maintenance

    async def clear(self) -> None:
        async with self._lock:
            # Bump everything so open transactions cannot commit over a reset
            self._bump(*list(self._versions))
            self._reservations.clear()
            self._by_resource.clear()
            self._by_user.clear()
            self._resources.clear()
            self._profiles.clear()
            self._orphaned.update(self._versions)
            self._prune_versions()
            logger.debug("Cleared all reservations, resources and profiles")

    async def health_check(self) -> HealthCheckResult:
        async with self._lock:
            return HealthCheckResult(
                healthy=True,
                store_type=self.store_type,
                namespace=self.namespace,
                metadata={
                    "reservations": len(self._reservations),
                    "resources": len(self._resources),
                    "profiles": len(self._profiles),
                    "commits": self._commits,
                    "conflicts": self._conflicts,
                },
            )

    async def close(self) -> None:
        logger.debug(f"Closed MemoryIntervalStore '{self.namespace}'")
