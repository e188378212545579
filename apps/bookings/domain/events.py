"""
Booking Domain Events

Published through the message bus after the transaction that produced
them has committed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class BookingCreated(DomainEvent):
    """A client requested one or more slots (status ``pending``)."""
    booking_id: UUID
    space_id: int
    user_id: int
    unique_request_id: str


@dataclass(kw_only=True)
class BookingSelected(DomainEvent):
    """
    Host picked this request (``pending -> selected``).

    ``rejected_booking_ids`` lists the competing requests rejected in the
    same transaction.
    """
    booking_id: UUID
    space_id: int
    selected_by: int
    rejected_booking_ids: Tuple[UUID, ...] = field(default_factory=tuple)


@dataclass(kw_only=True)
class BookingApproved(DomainEvent):
    """
    Booking confirmed.

    ``via_payment`` marks approvals driven by payment reconciliation,
    ``payment_override`` marks host approvals without a recorded payment.
    """
    booking_id: UUID
    space_id: int
    approved_by: int | None = None
    via_payment: bool = False
    payment_override: bool = False
    override_reason: str = ''


@dataclass(kw_only=True)
class BookingRejected(DomainEvent):
    booking_id: UUID
    space_id: int
    reason: str = ''
    rejected_by: int | None = None


@dataclass(kw_only=True)
class BookingCancelled(DomainEvent):
    booking_id: UUID
    space_id: int
    cancelled_by: int


@dataclass(kw_only=True)
class BookingPaid(DomainEvent):
    """A confirmed payment was attached to the booking (``paid_at`` set)."""
    booking_id: UUID
    paid_at: datetime
