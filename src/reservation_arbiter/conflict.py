# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Conflict detection for half-open reservation intervals.

Two intervals ``[a_start, a_end)`` and ``[b_start, b_end)`` conflict when
``a_start < b_end and b_start < a_end``. Touching intervals (one ends exactly
when the other starts) do not conflict.

The store answers overlap queries with a broad candidate set: every
reservation on the resource whose end is strictly after the candidate's
start. Given that prefilter, the remaining half of the predicate is a single
comparison per candidate, so the detector is a linear scan. At larger
booking densities the candidate query could be backed by an interval tree
instead; the predicate here stays the same.
"""

from collections.abc import Iterable
from datetime import datetime

from .types.reservation import Reservation


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Symmetric half-open overlap test."""
    return a_start < b_end and b_start < a_end


def find_conflicts(
    candidate_start: datetime,
    candidate_end: datetime,
    existing: Iterable[Reservation],
    exclude_id: str | None = None,
) -> list[Reservation]:
    """
    Return the reservations in ``existing`` that overlap the candidate.

    ``existing`` is expected to be prefiltered to reservations ending after
    ``candidate_start``; the full predicate is applied anyway so callers may
    pass unfiltered collections.

    Args:
        candidate_start: Start of the requested interval
        candidate_end: End of the requested interval
        existing: Reservations on the same resource
        exclude_id: Reservation being edited, never counted against itself

    Returns:
        Overlapping reservations in input order
    """
    return [
        reservation
        for reservation in existing
        if reservation.id != exclude_id
        and intervals_overlap(
            candidate_start, candidate_end, reservation.start, reservation.end
        )
    ]


def has_conflict(
    candidate_start: datetime,
    candidate_end: datetime,
    existing: Iterable[Reservation],
    exclude_id: str | None = None,
) -> bool:
    """True if any reservation in ``existing`` overlaps the candidate."""
    return any(
        reservation.id != exclude_id
        and intervals_overlap(
            candidate_start, candidate_end, reservation.start, reservation.end
        )
        for reservation in existing
    )


__all__ = ["find_conflicts", "has_conflict", "intervals_overlap"]
