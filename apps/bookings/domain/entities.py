"""
Booking Domain Entities

- BookingStatus: lifecycle states
- Actor: who is asking for a transition, and in which role
- Booking: aggregate root enforcing the transition table
"""

import secrets
import string
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional, Tuple

from shared.domain.base import Aggregate
from shared.domain.exceptions import (
    AlreadyFinalized,
    AuthorizationError,
    PaymentConfirmationRequired,
    StateError,
    ValidationError,
)
from shared.domain.value_objects import Money, TimeSlot


class BookingStatus(Enum):
    """
    Booking lifecycle

    - PENDING -> SELECTED (host picks the request, competitors rejected)
    - PENDING -> APPROVED (host approves directly)
    - SELECTED -> APPROVED (payment confirmed, or audited override)
    - PENDING/SELECTED -> REJECTED (host)
    - PENDING/SELECTED -> CANCELLED (owning client)
    APPROVED, REJECTED and CANCELLED are final.
    """
    PENDING = 'pending'
    SELECTED = 'selected'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'


TRANSITIONS = {
    BookingStatus.PENDING: {
        BookingStatus.SELECTED,
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.SELECTED: {
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
}

TERMINAL_STATUSES = frozenset({BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.CANCELLED})
LIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.SELECTED, BookingStatus.APPROVED})
BLOCKING_STATUSES = frozenset({BookingStatus.SELECTED, BookingStatus.APPROVED})

_REQUEST_ID_ALPHABET = string.digits + string.ascii_uppercase


class ActorRole(Enum):
    CLIENT = 'client'
    HOST = 'host'
    AGENT = 'agent'


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: ActorRole

    @classmethod
    def from_user(cls, user) -> 'Actor':
        return cls(user_id=user.pk, role=ActorRole(user.role))

    @property
    def is_agent(self) -> bool:
        return self.role is ActorRole.AGENT


def _base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_REQUEST_ID_ALPHABET[remainder])
    return ''.join(reversed(digits)) or '0'


def generate_request_id(now: datetime) -> str:
    """``REQ-<base36 ms timestamp>-<5 random chars>``, e.g. ``REQ-LZ3K9Q2A-7XK1P``."""
    timestamp = _base36(int(now.timestamp() * 1000))
    suffix = ''.join(secrets.choice(_REQUEST_ID_ALPHABET) for _ in range(5))
    return f"REQ-{timestamp}-{suffix}"


@dataclass(kw_only=True, eq=False)
class Booking(Aggregate):
    """
    Booking Aggregate Root

    Invariants:
    - time slots are fixed at creation
    - status only moves along ``TRANSITIONS``; final states never change
    - host decisions come from the space owner or an agent, cancellation
      from the client who made the request
    """

    space_id: int
    host_id: int
    user_id: int
    time_slots: Tuple[TimeSlot, ...]
    unique_request_id: str

    total_price: Money
    service_fee: Money = field(default_factory=lambda: Money(0))
    final_total: Optional[Money] = None

    guest_name: str = ''
    guest_phone: str = ''
    num_of_guests: int = 1

    status: BookingStatus = BookingStatus.PENDING
    selected_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    rejection_reason: str = ''

    payment_response: dict = field(default_factory=dict)
    payment_override_by: Optional[int] = None
    payment_override_reason: str = ''

    def __post_init__(self):
        if not self.time_slots:
            raise ValidationError("At least one time slot is required", field='time_slots')
        self.time_slots = tuple(sorted(self.time_slots, key=lambda s: (s.date, s.start_time)))
        if self.num_of_guests < 1:
            raise ValidationError("Number of guests must be at least 1", field='num_of_guests')
        if self.final_total is None:
            self.final_total = self.total_price

    # --- queries ---------------------------------------------------------

    @property
    def check_in_date(self) -> date:
        return self.time_slots[0].date

    @property
    def check_out_date(self) -> date:
        return self.time_slots[-1].date

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def awaiting_payment(self) -> bool:
        """Selected, or approved by override and still unpaid."""
        if self.status is BookingStatus.SELECTED:
            return True
        return self.status is BookingStatus.APPROVED and self.paid_at is None

    def first_overlap(self, slots: Iterable[TimeSlot], cooldown_minutes: int = 0) -> Optional[TimeSlot]:
        """First of ``slots`` overlapping one of this booking's slots."""
        for proposed in slots:
            for own in self.time_slots:
                if proposed.overlaps_with(own, cooldown_minutes):
                    return proposed
        return None

    def overlaps(self, other: 'Booking', cooldown_minutes: int = 0) -> bool:
        return other.space_id == self.space_id and self.first_overlap(other.time_slots, cooldown_minutes) is not None

    # --- guards ----------------------------------------------------------

    def _ensure_transition(self, target: BookingStatus):
        if self.is_final:
            raise AlreadyFinalized(
                f"Booking {self.unique_request_id} is already {self.status.value}",
                current_status=self.status.value,
            )
        if target not in TRANSITIONS[self.status]:
            raise StateError(
                f"Cannot move booking {self.unique_request_id} from {self.status.value} to {target.value}",
                current_status=self.status.value,
            )

    def _ensure_host_or_agent(self, actor: Actor):
        if actor.is_agent:
            return
        if actor.role is ActorRole.HOST and actor.user_id == self.host_id:
            return
        raise AuthorizationError("Only the space owner or an agent can decide on this booking")

    # --- transitions -----------------------------------------------------

    def select(self, actor: Actor, now: datetime):
        """
        PENDING -> SELECTED

        Rejecting the competing requests is the command handler's job; it
        does so in the same transaction.
        """
        self._ensure_host_or_agent(actor)
        self._ensure_transition(BookingStatus.SELECTED)
        self.status = BookingStatus.SELECTED
        self.selected_at = now
        self.touch(now)

    def approve(
        self,
        actor: Actor,
        now: datetime,
        *,
        payment_confirmed: bool = False,
        override_reason: str = '',
    ):
        """
        PENDING/SELECTED -> APPROVED

        A selected booking needs a confirmed payment. Without one the host
        must pass ``override_reason``; the override is recorded on the
        booking and in the emitted event.
        """
        from apps.bookings.domain.events import BookingApproved

        self._ensure_host_or_agent(actor)
        self._ensure_transition(BookingStatus.APPROVED)

        override = False
        if self.status is BookingStatus.SELECTED and not payment_confirmed:
            if not override_reason.strip():
                raise PaymentConfirmationRequired(
                    f"Booking {self.unique_request_id} has no confirmed payment; "
                    f"check the payment status or approve with an explicit override",
                    current_status=self.status.value,
                )
            override = True
            self.payment_override_by = actor.user_id
            self.payment_override_reason = override_reason.strip()

        self.status = BookingStatus.APPROVED
        self.approved_at = now
        self.touch(now)
        self.add_event(BookingApproved(
            aggregate_id=self.id,
            booking_id=self.id,
            space_id=self.space_id,
            approved_by=actor.user_id,
            payment_override=override,
            override_reason=self.payment_override_reason if override else '',
        ))

    def reject(self, actor: Optional[Actor], now: datetime, reason: str = ''):
        """
        PENDING/SELECTED -> REJECTED

        ``actor`` is None when the system rejects a competing request.
        """
        from apps.bookings.domain.events import BookingRejected

        if actor is not None:
            self._ensure_host_or_agent(actor)
        self._ensure_transition(BookingStatus.REJECTED)
        self.status = BookingStatus.REJECTED
        self.rejected_at = now
        self.rejection_reason = reason
        self.touch(now)
        self.add_event(BookingRejected(
            aggregate_id=self.id,
            booking_id=self.id,
            space_id=self.space_id,
            reason=reason,
            rejected_by=actor.user_id if actor else None,
        ))

    def cancel(self, actor: Actor, now: datetime):
        """PENDING/SELECTED -> CANCELLED, by the client who made the request."""
        from apps.bookings.domain.events import BookingCancelled

        if actor.role is not ActorRole.CLIENT or actor.user_id != self.user_id:
            raise AuthorizationError("Only the client who made the request can cancel it")
        self._ensure_transition(BookingStatus.CANCELLED)
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = now
        self.touch(now)
        self.add_event(BookingCancelled(
            aggregate_id=self.id,
            booking_id=self.id,
            space_id=self.space_id,
            cancelled_by=actor.user_id,
        ))

    def confirm_payment(self, paid_at: datetime, now: datetime, snapshot: dict | None = None) -> bool:
        """
        Attach a confirmed payment.

        Returns True when this call approved the booking. An approved
        booking only gets a missing ``paid_at`` filled in; a rejected or
        cancelled one raises ``AlreadyFinalized``.
        """
        from apps.bookings.domain.events import BookingApproved, BookingPaid

        if self.status is BookingStatus.APPROVED:
            if self.paid_at is None:
                self.paid_at = paid_at
                if snapshot:
                    self.payment_response = snapshot
                self.touch(now)
                self.add_event(BookingPaid(aggregate_id=self.id, booking_id=self.id, paid_at=paid_at))
            return False

        self._ensure_transition(BookingStatus.APPROVED)
        self.status = BookingStatus.APPROVED
        self.approved_at = paid_at
        self.paid_at = paid_at
        if snapshot:
            self.payment_response = snapshot
        self.touch(now)
        self.add_event(BookingPaid(aggregate_id=self.id, booking_id=self.id, paid_at=paid_at))
        self.add_event(BookingApproved(
            aggregate_id=self.id,
            booking_id=self.id,
            space_id=self.space_id,
            via_payment=True,
        ))
        return True

    def status_message(self) -> str:
        return STATUS_MESSAGES[self.status]

    def __str__(self):
        return f"Booking {self.unique_request_id} ({self.status.value})"


STATUS_MESSAGES = {
    BookingStatus.PENDING: "Booking request is waiting for the host",
    BookingStatus.SELECTED: "Booking selected by the host, waiting for payment",
    BookingStatus.APPROVED: "Booking approved",
    BookingStatus.REJECTED: "Booking rejected",
    BookingStatus.CANCELLED: "Booking cancelled",
}
