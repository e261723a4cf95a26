# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Reservation model for the reservation arbiter.

A reservation is an exclusive claim on one resource by one user for the
half-open interval ``[start, end)``. Instants are absolute: naive datetimes
are rejected and every instant is normalised to UTC.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_reservation_id() -> str:
    return uuid.uuid4().hex


def ensure_aware(value: datetime, name: str = "timestamp") -> datetime:
    """
    Normalise an instant to UTC, rejecting naive datetimes.

    Raises:
        ValueError: If value carries no timezone information
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError(f"{name} must be timezone-aware, got naive {value!r}")
    return value.astimezone(timezone.utc)


class Reservation(BaseModel):
    """
    A committed reservation on a resource.

    Instances are immutable; mutations produce a copy through
    ``model_copy(update=...)`` so a transaction never alters a value another
    reader holds.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_reservation_id)
    resource_id: str
    owner_id: str
    start: datetime
    end: datetime
    label: str = ""
    owner_name: str = ""
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("start", "end", "created_at")
    @classmethod
    def _validate_aware(cls, value: datetime, info: ValidationInfo) -> datetime:
        return ensure_aware(value, info.field_name or "timestamp")

    @model_validator(mode="after")
    def _validate_interval(self) -> "Reservation":
        """Validate that end is after start."""
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    def is_active(self, now: datetime) -> bool:
        """True while the reservation has not ended (end >= now)."""
        return self.end >= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dict for backend storage."""
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "owner_id": self.owner_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
            "owner_name": self.owner_name,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Reservation":
        """Create Reservation from a dict produced by to_dict()."""
        return cls(
            id=data["id"],
            resource_id=data["resource_id"],
            owner_id=data["owner_id"],
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            label=data.get("label", ""),
            owner_name=data.get("owner_name", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Calendar-facing view: id, title, start, end and user_id."""
        return {
            "id": self.id,
            "title": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "user_id": self.owner_id,
        }


def compose_label(title: str, display_name: str) -> str:
    """Build the stored label, e.g. ``"Annealing run (by Ada)"``."""
    return f"{title} (by {display_name})"


__all__ = [
    "Reservation",
    "compose_label",
    "ensure_aware",
    "new_reservation_id",
    "utc_now",
]
