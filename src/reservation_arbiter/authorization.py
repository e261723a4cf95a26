# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Edit-authorization policy for existing reservations.

Rules, evaluated in order:

1. A privileged actor may modify or cancel any reservation at any time.
2. An actor who is not the owner may not.
3. The owner may not once the grace period since creation has elapsed.
4. Otherwise the owner may.

The grace period boundary is inclusive: at exactly ``created_at + grace``
the owner is still allowed.
"""

from datetime import datetime, timedelta
from enum import Enum

from .exceptions import ForbiddenError, GracePeriodExpiredError
from .types.reservation import Reservation


class AuthorizationDecision(Enum):
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"
    GRACE_PERIOD_EXPIRED = "grace_period_expired"


def is_authorized(
    actor_id: str,
    actor_is_privileged: bool,
    reservation: Reservation,
    now: datetime,
    grace: timedelta,
) -> AuthorizationDecision:
    """Evaluate the edit policy without raising."""
    if actor_is_privileged:
        return AuthorizationDecision.ALLOWED
    if actor_id != reservation.owner_id:
        return AuthorizationDecision.FORBIDDEN
    if now - reservation.created_at > grace:
        return AuthorizationDecision.GRACE_PERIOD_EXPIRED
    return AuthorizationDecision.ALLOWED


def authorize(
    actor_id: str,
    actor_is_privileged: bool,
    reservation: Reservation,
    now: datetime,
    grace: timedelta,
) -> None:
    """
    Enforce the edit policy.

    Raises:
        ForbiddenError: If the actor neither owns the reservation nor is privileged
        GracePeriodExpiredError: If the owner's edit window has closed
    """
    decision = is_authorized(actor_id, actor_is_privileged, reservation, now, grace)
    if decision is AuthorizationDecision.FORBIDDEN:
        raise ForbiddenError(actor_id, reservation.id)
    if decision is AuthorizationDecision.GRACE_PERIOD_EXPIRED:
        raise GracePeriodExpiredError(reservation.id, reservation.created_at + grace)


__all__ = ["AuthorizationDecision", "authorize", "is_authorized"]
