"""
Conflict Detector

Two slots conflict when they share a calendar date and their
``[start, end)`` ranges intersect (optionally padded by the space's
cooldown). Only live bookings (pending, selected, approved) take part.
The repository narrows candidates in the database; the final decision
is made here so it is the same everywhere.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional
from uuid import UUID

from apps.bookings.domain.entities import LIVE_STATUSES, Booking, BookingStatus
from shared.domain.value_objects import TimeSlot


@dataclass(frozen=True)
class Conflict:
    booking: Booking
    proposed_slot: TimeSlot


def find_overlapping(
    slots: Iterable[TimeSlot],
    candidates: Iterable[Booking],
    *,
    exclude_booking_id: Optional[UUID] = None,
    statuses: Iterable[BookingStatus] = LIVE_STATUSES,
    cooldown_minutes: int = 0,
) -> List[Conflict]:
    """Candidates with one of ``statuses`` overlapping any of ``slots``, in input order."""
    slots = list(slots)
    statuses = frozenset(statuses)
    conflicts = []
    for booking in candidates:
        if booking.id == exclude_booking_id or booking.status not in statuses:
            continue
        proposed = booking.first_overlap(slots, cooldown_minutes)
        if proposed is not None:
            conflicts.append(Conflict(booking=booking, proposed_slot=proposed))
    return conflicts
