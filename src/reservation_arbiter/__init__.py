# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Reservation Arbiter - Conflict-free booking of shared physical resources.

This library decides whether a proposed time window on a shared resource
(an oven, a furnace) may be granted, and commits it atomically against
concurrent competing requests.

Key Features:
    - No double-booking: overlapping reservations on one resource never commit
    - Per-user quota of active bookings
    - Maximum booking duration
    - Owner edit window with privileged override
    - Optimistic, serializable transactions with bounded retry
    - Multiple store options (memory, Redis)

Quick Start:
    >>> from reservation_arbiter import MemoryIntervalStore, ReservationArbitrator
    >>>
    >>> async with MemoryIntervalStore() as store:
    ...     arbitrator = ReservationArbitrator(store)
    ...     booking = await arbitrator.create_reservation(
    ...         "oven-1", "ada", start, end, "Annealing run"
    ...     )

Main Exports:
    - ReservationArbitrator: Create, update and cancel reservations
    - MemoryIntervalStore, RedisIntervalStore: Storage backends
    - ArbitratorConfig: Configuration options
    - Reservation, Resource, UserProfile: Data model

Note: RedisIntervalStore requires the 'redis' extra. Install with:
    pip install reservation-arbiter[redis]

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .arbitrator import ReservationArbitrator
from .authorization import AuthorizationDecision, authorize, is_authorized
from .config import ArbitratorConfig, MaintenancePolicy, QuotaScope
from .conflict import find_conflicts, has_conflict, intervals_overlap
from .exceptions import (
    ArbitrationError,
    ConfigurationError,
    ForbiddenError,
    GracePeriodExpiredError,
    InvalidIntervalError,
    QuotaExceededError,
    ReservationNotFoundError,
    ResourceUnavailableError,
    SlotConflictError,
    StorageTransientError,
    TransactionConflictError,
)
from .observability import ArbitrationMetrics
from .quota import QuotaEnforcer
from .stores import (
    BaseIntervalStore,
    HealthCheckResult,
    MemoryIntervalStore,
    StoreTransaction,
)
from .types import Reservation, Resource, ResourceState, UserProfile

# Lazy import for optional redis store
if TYPE_CHECKING:
    from .stores import RedisIntervalStore

__all__ = [
    "ArbitrationError",
    "ArbitrationMetrics",
    # Configuration
    "ArbitratorConfig",
    "AuthorizationDecision",
    # Stores
    "BaseIntervalStore",
    "ConfigurationError",
    "ForbiddenError",
    "GracePeriodExpiredError",
    "HealthCheckResult",
    "InvalidIntervalError",
    "MaintenancePolicy",
    "MemoryIntervalStore",
    "QuotaEnforcer",
    "QuotaExceededError",
    "QuotaScope",
    "RedisIntervalStore",
    # Data model
    "Reservation",
    # Core
    "ReservationArbitrator",
    "ReservationNotFoundError",
    "Resource",
    "ResourceState",
    "ResourceUnavailableError",
    "SlotConflictError",
    "StorageTransientError",
    "StoreTransaction",
    "TransactionConflictError",
    "UserProfile",
    "__version__",
    "authorize",
    "find_conflicts",
    "has_conflict",
    "intervals_overlap",
    "is_authorized",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis store."""
    if name == "RedisIntervalStore":
        from .stores import RedisIntervalStore

        return RedisIntervalStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
