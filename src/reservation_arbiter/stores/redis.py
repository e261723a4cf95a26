# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisIntervalStore for Reservation Arbiter

This module provides the RedisIntervalStore that implements distributed,
serializable reservation storage with optimistic WATCH/MULTI/EXEC
transactions.

Key Features:
- Reservation documents stored as JSON strings
- Per-resource and per-user sorted-set indexes scored by end instant
- Every key a transaction reads is WATCHed before the read
- Buffered writes applied in a single MULTI/EXEC block
- WatchError surfaces as TransactionConflictError for the retry loop

Key layout (``ns`` is the namespace):
- ``{ns}:reservation:{id}``: reservation JSON
- ``{ns}:resource:{rid}:by_end``: sorted set, member id, score end (epoch us)
- ``{ns}:user:{uid}:by_end``: sorted set, member id, score end (epoch us)
- ``{ns}:resource:{rid}``: resource JSON
- ``{ns}:profile:{uid}``: user profile JSON

Deployment Requirements:
- A single Redis primary (transactions touch keys of several resources and
  users, which Redis Cluster cannot combine in one MULTI block)
"""

import contextlib
import json
import logging
import os
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError, WatchError

from ..exceptions import (
    ConfigurationError,
    ReservationNotFoundError,
    StorageTransientError,
    TransactionConflictError,
)
from ..types.reservation import Reservation
from ..types.resource import Resource, UserProfile
from .base import BaseIntervalStore, HealthCheckResult, StoreTransaction

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def to_score(instant: datetime) -> int:
    """Exact epoch microseconds; stays below 2**53 so Redis scores are lossless."""
    return (instant - _EPOCH) // _MICROSECOND


@contextlib.contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map redis-py failures to store exceptions."""
    try:
        yield
    except WatchError as e:
        raise TransactionConflictError(
            f"Watched keys changed during {operation}"
        ) from e
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.error(f"Redis error during {operation}: {e}")
        raise StorageTransientError(f"Redis error during {operation}: {e}") from e


class RedisTransaction(StoreTransaction):
    """
    Optimistic transaction over a dedicated Redis pipeline.

    The pipeline stays in immediate (WATCH) mode while the transaction
    reads; commit switches it to MULTI and queues the buffered writes.
    """

    def __init__(self, store: "RedisIntervalStore", pipe: Any) -> None:
        self._store = store
        self._pipe = pipe
        self._watched: set[str] = set()
        # Value of each written reservation before this transaction touched it
        self._originals: dict[str, Reservation | None] = {}
        self._writes: dict[str, Reservation | None] = {}

    async def _watch(self, *keys: str) -> None:
        new = [key for key in keys if key not in self._watched]
        if new:
            await self._pipe.watch(*new)
            self._watched.update(new)

    async def _load(self, reservation_ids: list[str]) -> list[Reservation]:
        if not reservation_ids:
            return []
        keys = [self._store._reservation_key(rid) for rid in reservation_ids]
        await self._watch(*keys)
        raw = await self._pipe.mget(keys)
        return [Reservation.from_dict(json.loads(doc)) for doc in raw if doc]

    def _overlay(
        self, stored: list[Reservation], keep: Callable[[Reservation], bool]
    ) -> list[Reservation]:
        merged = {r.id: r for r in stored if r.id not in self._writes}
        for reservation_id, value in self._writes.items():
            if value is not None and keep(value):
                merged[reservation_id] = value
        return sorted(merged.values(), key=lambda r: (r.start, r.id))

    async def get(self, reservation_id: str) -> Reservation | None:
        if reservation_id in self._writes:
            return self._writes[reservation_id]
        key = self._store._reservation_key(reservation_id)
        with _translate_errors("get"):
            await self._watch(key)
            raw = await self._pipe.get(key)
        return Reservation.from_dict(json.loads(raw)) if raw else None

    async def query_overlap_candidates(
        self, resource_id: str, after: datetime
    ) -> list[Reservation]:
        index_key = self._store._resource_index_key(resource_id)
        with _translate_errors("query_overlap_candidates"):
            await self._watch(index_key)
            ids = await self._pipe.zrangebyscore(
                index_key, f"({to_score(after)}", "+inf"
            )
            stored = await self._load(list(ids))
        return self._overlay(
            [r for r in stored if r.end > after],
            lambda r: r.resource_id == resource_id and r.end > after,
        )

    async def query_user_reservations(
        self, user_id: str, ending_at_or_after: datetime
    ) -> list[Reservation]:
        index_key = self._store._user_index_key(user_id)
        with _translate_errors("query_user_reservations"):
            await self._watch(index_key)
            ids = await self._pipe.zrangebyscore(
                index_key, to_score(ending_at_or_after), "+inf"
            )
            stored = await self._load(list(ids))
        return self._overlay(
            [r for r in stored if r.end >= ending_at_or_after],
            lambda r: r.owner_id == user_id and r.end >= ending_at_or_after,
        )

    async def get_resource(self, resource_id: str) -> Resource | None:
        key = self._store._resource_key(resource_id)
        with _translate_errors("get_resource"):
            await self._watch(key)
            raw = await self._pipe.get(key)
        return Resource.from_dict(json.loads(raw)) if raw else None

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        key = self._store._profile_key(user_id)
        with _translate_errors("get_user_profile"):
            await self._watch(key)
            raw = await self._pipe.get(key)
        return UserProfile.from_dict(json.loads(raw)) if raw else None

    def _remember_original(
        self, reservation_id: str, current: Reservation | None
    ) -> None:
        if reservation_id not in self._originals:
            self._originals[reservation_id] = current

    async def insert(self, reservation: Reservation) -> None:
        current = await self.get(reservation.id)
        if current is not None:
            raise ValueError(f"Reservation {reservation.id} already exists")
        self._remember_original(reservation.id, None)
        self._writes[reservation.id] = reservation

    async def update(self, reservation_id: str, **fields: Any) -> Reservation:
        current = await self.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)
        self._remember_original(reservation_id, current)
        updated = current.model_copy(update=fields)
        self._writes[reservation_id] = updated
        return updated

    async def delete(self, reservation_id: str) -> Reservation:
        current = await self.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)
        self._remember_original(reservation_id, current)
        self._writes[reservation_id] = None
        return current

    def queue_writes(self) -> None:
        """Queue buffered writes on the pipeline. Must be called after multi()."""
        store = self._store
        pipe = self._pipe
        for reservation_id, value in self._writes.items():
            original = self._originals.get(reservation_id)
            if original is not None:
                pipe.zrem(store._resource_index_key(original.resource_id), reservation_id)
                pipe.zrem(store._user_index_key(original.owner_id), reservation_id)
            doc_key = store._reservation_key(reservation_id)
            if value is None:
                pipe.delete(doc_key)
                continue
            pipe.set(doc_key, json.dumps(value.to_dict()))
            score = to_score(value.end)
            pipe.zadd(store._resource_index_key(value.resource_id), {reservation_id: score})
            pipe.zadd(store._user_index_key(value.owner_id), {reservation_id: score})


class RedisIntervalStore(BaseIntervalStore):
    """
    A distributed Redis interval store.

    Each transaction runs on its own pipeline (and therefore its own
    connection from the pool), so WATCH state never leaks between
    concurrent requests.
    """

    store_type = "redis"

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        namespace: str = "reservation_arbiter",
        max_connections: int = 10,
    ) -> None:
        """
        Initialize the Redis interval store.

        Args:
            redis_url: Redis connection URL. If not provided, falls back to REDIS_URL
                environment variable, then to "redis://localhost:6379".
            redis_client: Optional pre-configured Redis client. It must be
                created with ``decode_responses=True``.
            namespace: Namespace prefix for keys
            max_connections: Maximum connections in the pool

        Environment Variables:
            REDIS_URL: Default Redis connection URL when redis_url parameter is not provided.

        Raises:
            ConfigurationError: If the URL scheme is not a Redis scheme
        """
        super().__init__(namespace)

        self.redis_url = (
            redis_url or os.environ.get("REDIS_URL") or "redis://localhost:6379"
        )
        if redis_client is None and not self.redis_url.startswith(
            ("redis://", "rediss://", "unix://")
        ):
            raise ConfigurationError(f"Unsupported Redis URL: {self.redis_url}")
        self.max_connections = max_connections

        self._redis: Any = redis_client or Redis.from_url(
            self.redis_url,
            decode_responses=True,
            max_connections=max_connections,
        )
        self._owned_redis = redis_client is None

    # Key construction

    def _reservation_key(self, reservation_id: str) -> str:
        return f"{self.namespace}:reservation:{reservation_id}"

    def _resource_index_key(self, resource_id: str) -> str:
        return f"{self.namespace}:resource:{resource_id}:by_end"

    def _user_index_key(self, user_id: str) -> str:
        return f"{self.namespace}:user:{user_id}:by_end"

    def _resource_key(self, resource_id: str) -> str:
        return f"{self.namespace}:resource:{resource_id}"

    def _profile_key(self, user_id: str) -> str:
        return f"{self.namespace}:profile:{user_id}"

    # Transactions

    async def _begin(self) -> StoreTransaction:
        return RedisTransaction(self, self._redis.pipeline(transaction=True))

    def _own(self, tx: StoreTransaction) -> RedisTransaction:
        if not isinstance(tx, RedisTransaction) or tx._store is not self:
            raise ConfigurationError(
                f"Transaction {tx!r} was not opened by this RedisIntervalStore"
            )
        return tx

    async def _commit(self, tx: StoreTransaction) -> None:
        tx = self._own(tx)
        with _translate_errors("commit"):
            tx._pipe.multi()
            tx.queue_writes()
            await tx._pipe.execute()

    async def _validate(self, tx: StoreTransaction) -> bool:
        tx = self._own(tx)
        if not tx._watched:
            return True
        try:
            with _translate_errors("validate"):
                # An empty MULTI/EXEC still fails if a watched key changed
                tx._pipe.multi()
                await tx._pipe.execute()
        except TransactionConflictError:
            return False
        return True

    async def _release(self, tx: StoreTransaction) -> None:
        tx = self._own(tx)
        try:
            await tx._pipe.reset()
        except RedisError as e:
            logger.debug(f"Error resetting pipeline: {e}")

    # Non-transactional Reads

    async def _mget_reservations(self, ids: list[str]) -> list[Reservation]:
        if not ids:
            return []
        raw = await self._redis.mget([self._reservation_key(rid) for rid in ids])
        found = [Reservation.from_dict(json.loads(doc)) for doc in raw if doc]
        return sorted(found, key=lambda r: (r.start, r.id))

    async def get(self, reservation_id: str) -> Reservation | None:
        with _translate_errors("get"):
            raw = await self._redis.get(self._reservation_key(reservation_id))
        return Reservation.from_dict(json.loads(raw)) if raw else None

    async def list_reservations(self, resource_id: str) -> list[Reservation]:
        with _translate_errors("list_reservations"):
            ids = await self._redis.zrange(self._resource_index_key(resource_id), 0, -1)
            return await self._mget_reservations(list(ids))

    async def list_user_reservations(
        self, user_id: str, ending_at_or_after: datetime | None = None
    ) -> list[Reservation]:
        low: Any = "-inf" if ending_at_or_after is None else to_score(ending_at_or_after)
        with _translate_errors("list_user_reservations"):
            ids = await self._redis.zrangebyscore(
                self._user_index_key(user_id), low, "+inf"
            )
            return await self._mget_reservations(list(ids))

    async def get_resource(self, resource_id: str) -> Resource | None:
        with _translate_errors("get_resource"):
            raw = await self._redis.get(self._resource_key(resource_id))
        return Resource.from_dict(json.loads(raw)) if raw else None

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        with _translate_errors("get_user_profile"):
            raw = await self._redis.get(self._profile_key(user_id))
        return UserProfile.from_dict(json.loads(raw)) if raw else None

    # Administrative Writes

    async def save_resource(self, resource: Resource) -> None:
        with _translate_errors("save_resource"):
            await self._redis.set(
                self._resource_key(resource.id), json.dumps(resource.to_dict())
            )

    async def save_user_profile(self, profile: UserProfile) -> None:
        with _translate_errors("save_user_profile"):
            await self._redis.set(
                self._profile_key(profile.id), json.dumps(profile.to_dict())
            )

    # Health and Maintenance

    async def clear(self) -> None:
        """Delete every key under the namespace.

        Uses SCAN instead of KEYS to avoid blocking Redis during large keyspace scans.
        """
        with _translate_errors("clear"):
            batch: list[str] = []
            async for key in self._redis.scan_iter(
                match=f"{self.namespace}:*", count=100
            ):
                batch.append(key)
                if len(batch) >= 100:
                    await self._redis.delete(*batch)
                    batch = []
            if batch:
                await self._redis.delete(*batch)

    async def health_check(self) -> HealthCheckResult:
        """Perform health check on the store.

        Health is decided by PING alone; server INFO is attached when the
        server answers it.
        """
        try:
            started = time.perf_counter()
            await self._redis.ping()
            latency_ms = (time.perf_counter() - started) * 1000
        except Exception as e:
            return HealthCheckResult(
                healthy=False,
                store_type=self.store_type,
                namespace=self.namespace,
                error=str(e),
            )

        metadata: dict[str, Any] = {
            "redis_url": self.redis_url,
            "ping_ms": round(latency_ms, 3),
        }
        try:
            info = await self._redis.info()
        except RedisError as e:
            logger.debug(f"INFO unavailable during health check: {e}")
        else:
            metadata["redis_version"] = info.get("redis_version")
            metadata["connected_clients"] = info.get("connected_clients")
        return HealthCheckResult(
            healthy=True,
            store_type=self.store_type,
            namespace=self.namespace,
            metadata=metadata,
        )

    async def close(self) -> None:
        """Close the connection pool if this store created it."""
        if self._owned_redis:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.error(f"Error during cleanup: {e}")
