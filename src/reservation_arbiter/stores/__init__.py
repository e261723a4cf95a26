# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Interval store implementations for reservation storage.

This module provides the abstract base classes and concrete implementations
for transactional reservation storage.

Available stores:
- BaseIntervalStore: Abstract base class defining the store interface
- MemoryIntervalStore: In-memory store for single-process deployments
- RedisIntervalStore: Redis-based store for distributed deployments (requires redis extra)

Supporting types:
- StoreTransaction: Abstract optimistic transaction handed to transaction bodies
- HealthCheckResult: Structured result from store health checks

Note: RedisIntervalStore is lazily imported to avoid requiring the redis
package when only using MemoryIntervalStore.
"""

from typing import TYPE_CHECKING, cast

from reservation_arbiter.stores.base import (
    BaseIntervalStore,
    HealthCheckResult,
    StoreTransaction,
)
from reservation_arbiter.stores.memory import MemoryIntervalStore, MemoryTransaction

# Lazy imports for optional redis store
if TYPE_CHECKING:
    from reservation_arbiter.stores.redis import RedisIntervalStore, RedisTransaction

__all__ = [
    # Base classes
    "BaseIntervalStore",
    "HealthCheckResult",
    # Memory store
    "MemoryIntervalStore",
    "MemoryTransaction",
    # Redis store (lazy loaded)
    "RedisIntervalStore",
    "RedisTransaction",
    "StoreTransaction",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis store components."""
    if name in ("RedisIntervalStore", "RedisTransaction"):
        try:
            from reservation_arbiter.stores import redis as redis_module

            return cast(type, getattr(redis_module, name))
        except ImportError as e:  # pragma: no cover
            raise ImportError(  # pragma: no cover
                f"'{name}' requires the 'redis' extra. "
                "Install with: pip install reservation-arbiter[redis]"
            ) from e
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
