# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Core data types for the reservation arbiter."""

from .reservation import (
    Reservation,
    compose_label,
    ensure_aware,
    new_reservation_id,
    utc_now,
)
from .resource import Resource, ResourceState, UserProfile

__all__ = [
    "Reservation",
    "Resource",
    "ResourceState",
    "UserProfile",
    "compose_label",
    "ensure_aware",
    "new_reservation_id",
    "utc_now",
]
