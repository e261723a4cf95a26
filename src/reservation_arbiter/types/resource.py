# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Resource and user profile types.

Resources (ovens, furnaces) and user profiles are owned by administrative
collaborators outside the arbitration engine. The arbitrator only reads
them: resource state for the maintenance and quota policies, and the
profile display name for booking labels.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class ResourceState(Enum):
    """Operational state of a bookable resource."""

    ACTIVE = "active"
    MAINTENANCE = "maintenance"


@dataclass(frozen=True)
class Resource:
    """
    A shared physical asset that can be reserved.

    Attributes:
        id: Unique resource identifier
        name: Display name (e.g. "High-Temp Furnace")
        state: Operational state
    """

    id: str
    name: str
    state: ResourceState = ResourceState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is ResourceState.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "state": self.state.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Resource":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            state=ResourceState(data.get("state", ResourceState.ACTIVE.value)),
        )


@dataclass(frozen=True)
class UserProfile:
    """Display information for a user, read inside booking transactions."""

    id: str
    display_name: str
    privileged: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        return cls(
            id=data["id"],
            display_name=data["display_name"],
            privileged=bool(data.get("privileged", False)),
        )


__all__ = ["Resource", "ResourceState", "UserProfile"]
