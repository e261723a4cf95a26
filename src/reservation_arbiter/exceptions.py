# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the reservation arbiter.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from ArbitrationError, making it easy to catch
all arbitration-related exceptions with a single except clause.

Every exception carries a ``retryable`` class attribute so callers can
decide between surfacing the error to the user and retrying the request.
"""

from datetime import datetime


class ArbitrationError(Exception):
    """Base exception for all reservation arbitration errors.

    Example:
        try:
            await arbitrator.create_reservation(...)
        except ArbitrationError as e:
            logger.error(f"Booking rejected: {e}")
    """

    retryable: bool = False


class InvalidIntervalError(ArbitrationError):
    """Raised when a requested interval is malformed or too long.

    Covers ``start >= end``, timestamps without timezone information and
    intervals exceeding the configured maximum booking duration. The caller
    can correct this by submitting a different interval.

    Attributes:
        start: The requested start instant, if available.
        end: The requested end instant, if available.
    """

    def __init__(
        self,
        message: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ):
        super().__init__(message)
        self.start = start
        self.end = end


class QuotaExceededError(ArbitrationError):
    """Raised when a user already holds the maximum number of active bookings.

    Attributes:
        user_id: The user whose quota is exhausted.
        active_count: Number of not-yet-ended reservations the user holds.
        limit: The configured ceiling.

    Example:
        try:
            await arbitrator.create_reservation(...)
        except QuotaExceededError as e:
            notify(f"You have reached your limit of {e.limit} active bookings.")
    """

    def __init__(self, user_id: str, active_count: int, limit: int):
        super().__init__(
            f"User {user_id} has reached the limit of {limit} active bookings "
            f"({active_count} active)"
        )
        self.user_id = user_id
        self.active_count = active_count
        self.limit = limit


class SlotConflictError(ArbitrationError):
    """Raised when the requested interval overlaps an existing reservation.

    Retrying with the same interval will fail again; retrying with a
    different interval may succeed.

    Attributes:
        resource_id: The contested resource.
        conflicting_ids: Ids of the reservations that overlap the request.
    """

    retryable = True

    def __init__(self, resource_id: str, conflicting_ids: list[str] | None = None):
        super().__init__(
            f"This time slot conflicts with an existing booking on {resource_id}"
        )
        self.resource_id = resource_id
        self.conflicting_ids = list(conflicting_ids or [])


class ReservationNotFoundError(ArbitrationError):
    """Raised when a reservation id does not reference a stored reservation."""

    def __init__(self, reservation_id: str):
        super().__init__(f"Reservation not found: {reservation_id}")
        self.reservation_id = reservation_id


class ForbiddenError(ArbitrationError):
    """Raised when a non-privileged actor tries to modify someone else's booking."""

    def __init__(self, actor_id: str, reservation_id: str):
        super().__init__(
            f"Actor {actor_id} is not authorized to modify reservation {reservation_id}"
        )
        self.actor_id = actor_id
        self.reservation_id = reservation_id


class GracePeriodExpiredError(ArbitrationError):
    """Raised when the owner tries to modify a booking after its edit window.

    Attributes:
        reservation_id: The reservation the owner tried to modify.
        expired_at: The instant the edit window closed.
    """

    def __init__(self, reservation_id: str, expired_at: datetime):
        super().__init__(
            f"Edit window for reservation {reservation_id} closed at "
            f"{expired_at.isoformat()}"
        )
        self.reservation_id = reservation_id
        self.expired_at = expired_at


class ResourceUnavailableError(ArbitrationError):
    """Raised when booking a resource that is under maintenance.

    Only raised when the arbitrator is configured with
    ``MaintenancePolicy.BLOCK``.
    """

    def __init__(self, resource_id: str, state: str = "maintenance"):
        super().__init__(f"Resource {resource_id} is not bookable ({state})")
        self.resource_id = resource_id
        self.state = state


class StorageTransientError(ArbitrationError):
    """Raised when the interval store fails for reasons not caused by the user.

    This covers lost connections, timeouts and write contention that did not
    resolve within the configured retry bound. The request can be retried
    as-is.

    Attributes:
        attempts: Number of transaction attempts made before giving up.
    """

    retryable = True

    def __init__(self, message: str, attempts: int | None = None):
        super().__init__(message)
        self.attempts = attempts


class TransactionConflictError(StorageTransientError):
    """Raised by a store when a transaction's reads were invalidated at commit.

    The store's retry loop consumes this exception and re-runs the
    transaction body; it only reaches callers wrapped in a
    StorageTransientError once retries are exhausted.
    """

    pass


class ConfigurationError(ArbitrationError):
    """Raised when the arbitrator or a store is wired with invalid settings.

    Example:
        try:
            store = RedisIntervalStore(redis_url="not-a-url")
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise SystemExit(1)
    """

    pass


__all__ = [
    "ArbitrationError",
    "ConfigurationError",
    "ForbiddenError",
    "GracePeriodExpiredError",
    "InvalidIntervalError",
    "QuotaExceededError",
    "ReservationNotFoundError",
    "ResourceUnavailableError",
    "SlotConflictError",
    "StorageTransientError",
    "TransactionConflictError",
]
