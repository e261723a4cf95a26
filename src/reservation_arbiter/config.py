# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Arbitrator Configuration for Reservation Arbiter

This module provides the configuration dataclass for the reservation
arbitrator, including quota, duration, edit window and retry settings.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import timedelta
from enum import Enum


class QuotaScope(Enum):
    """Which reservations count towards a user's active-booking quota.

    - ALL_RESOURCES: Every not-yet-ended reservation counts, regardless of
      the state of the resource it is on.
    - ACTIVE_RESOURCES_ONLY: Reservations on resources currently under
      maintenance are not counted.
    """

    ALL_RESOURCES = "all_resources"
    ACTIVE_RESOURCES_ONLY = "active_resources_only"


class MaintenancePolicy(Enum):
    """How new bookings on a resource under maintenance are handled.

    - ALLOW: Maintenance state is informational only.
    - BLOCK: Creating a booking on, or moving a booking to, a resource
      under maintenance raises ResourceUnavailableError.
    """

    ALLOW = "allow"
    BLOCK = "block"


@dataclass
class ArbitratorConfig:
    """
    Configuration for the reservation arbitrator.

    All limits apply per arbitrator instance; every instance sharing a store
    should be configured identically.
    """

    # === Booking Limits ===

    max_active_bookings_per_user: int = 2
    """Maximum number of not-yet-ended reservations a user may hold."""

    max_booking_duration_hours: int = 168
    """Maximum length of a single reservation in hours (7 days)."""

    edit_grace_period_ms: int = 3_600_000
    """Window after creation during which the owner may edit or cancel."""

    # === Policies ===

    quota_scope: QuotaScope = QuotaScope.ALL_RESOURCES
    """Which reservations count towards the quota."""

    maintenance_policy: MaintenancePolicy = MaintenancePolicy.ALLOW
    """Whether resources under maintenance accept new bookings."""

    unknown_user_name: str = "Unknown User"
    """Name used in labels when no display name can be resolved."""

    # === Transactions ===

    max_transaction_retries: int = 2
    """Extra transaction attempts on write contention or transient failures."""

    retry_backoff_base: float = 0.01
    """Base delay in seconds for jittered exponential backoff between attempts."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.max_active_bookings_per_user < 1:
            raise ValueError("max_active_bookings_per_user must be at least 1")
        if self.max_booking_duration_hours < 1:
            raise ValueError("max_booking_duration_hours must be at least 1")
        if self.edit_grace_period_ms < 0:
            raise ValueError("edit_grace_period_ms must not be negative")
        if self.max_transaction_retries < 0:
            raise ValueError("max_transaction_retries must not be negative")
        if self.retry_backoff_base < 0:
            raise ValueError("retry_backoff_base must not be negative")

    @property
    def max_booking_duration(self) -> timedelta:
        return timedelta(hours=self.max_booking_duration_hours)

    @property
    def edit_grace_period(self) -> timedelta:
        return timedelta(milliseconds=self.edit_grace_period_ms)

    @classmethod
    def from_env(
        cls,
        prefix: str = "RESERVATION_ARBITER_",
        environ: Mapping[str, str] | None = None,
    ) -> "ArbitratorConfig":
        """
        Build a configuration from environment variables.

        Each field is read from ``{prefix}{FIELD_NAME}``, e.g.
        ``RESERVATION_ARBITER_MAX_ACTIVE_BOOKINGS_PER_USER=3``. Unset
        variables keep their defaults.

        Args:
            prefix: Environment variable prefix
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ValueError: If a variable cannot be converted to the field's type
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            default = getattr(cls, f.name)
            if isinstance(default, Enum):
                kwargs[f.name] = type(default)(raw.strip().lower())
            elif isinstance(default, int):
                kwargs[f.name] = int(raw)
            elif isinstance(default, float):
                kwargs[f.name] = float(raw)
            else:
                kwargs[f.name] = raw
        return cls(**kwargs)  # type: ignore[arg-type]


__all__ = [
    "ArbitratorConfig",
    "MaintenancePolicy",
    "QuotaScope",
]
