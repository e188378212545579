"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate domain operations within transactions.

Commands:
- CreateBookingCommand: client requests one or more slots
- SelectBookingCommand: host picks a request, competitors are rejected
- ApproveBookingCommand: host confirms a request
- RejectBookingCommand: host declines a request
- CancelBookingCommand: client withdraws a request
- ConfirmBookingPaymentCommand: payment reconciliation reports a PAID transaction

Lock order is always space row first, then the bookings involved, so a
create racing a select on the same space is serialised.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, List, Optional
from uuid import UUID
import logging

from django.conf import settings

from apps.bookings.domain.availability import validate_slot
from apps.bookings.domain.entities import (
    BLOCKING_STATUSES,
    Actor,
    ActorRole,
    Booking,
    BookingStatus,
    generate_request_id,
)
from apps.bookings.domain.events import BookingCreated, BookingSelected
from apps.bookings.repositories import DjangoBookingRepository, DjangoSpaceRepository
from shared.application.uow import DjangoUnitOfWork
from shared.domain.clock import Clock, get_clock
from shared.domain.exceptions import AuthorizationError, ConflictError, ValidationError
from shared.domain.value_objects import Money, TimeSlot

logger = logging.getLogger(__name__)

COMPETITOR_REJECTION_REASON = "Another request for this time was chosen by the host"


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    space_id: int
    actor: Actor
    time_slots: List[TimeSlot]
    guest_name: str = ''
    guest_phone: str = ''
    num_of_guests: int = 1


@dataclass
class SelectBookingCommand:
    booking_id: UUID
    actor: Actor


@dataclass
class ApproveBookingCommand:
    """
    ``payment_override`` approves a selected booking without a recorded
    payment; it needs a non-empty ``override_reason`` and is audited.
    """
    booking_id: UUID
    actor: Actor
    payment_override: bool = False
    override_reason: str = ''


@dataclass
class RejectBookingCommand:
    booking_id: UUID
    actor: Actor
    reason: str = ''


@dataclass
class CancelBookingCommand:
    booking_id: UUID
    actor: Actor


@dataclass
class ConfirmBookingPaymentCommand:
    """Sent by payment reconciliation only, inside its own transaction."""
    booking_id: UUID
    provider: str
    paid_at: Optional[datetime] = None
    snapshot: dict = field(default_factory=dict)


class PaymentConfirmationOutcome(Enum):
    APPROVED = 'approved'
    ALREADY_APPROVED = 'already_approved'
    SKIPPED_FINALIZED = 'skipped_finalized'
    SKIPPED_CONFLICT = 'skipped_conflict'


# ===== Helpers =====

def has_paid_transaction(booking_id: UUID) -> bool:
    from apps.payments.repositories import DjangoTransactionRepository

    return DjangoTransactionRepository().has_paid(booking_id)


def calculate_price(hourly_price: Decimal, slots: List[TimeSlot], currency: str = 'UZS'):
    """(total, service fee, final total) for ``slots`` at ``hourly_price``."""
    hours = sum((slot.duration for slot in slots), timedelta()) / timedelta(hours=1)
    total = (Decimal(hourly_price) * Decimal(str(hours))).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    rate = Decimal(str(getattr(settings, 'BOOKING_SERVICE_FEE_PERCENT', 0))) / Decimal(100)
    fee = (total * rate).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return Money(total, currency), Money(fee, currency), Money(total + fee, currency)


def _ensure_distinct_slots(slots: List[TimeSlot]):
    ordered = sorted(slots, key=lambda s: (s.date, s.start_time))
    for previous, current in zip(ordered, ordered[1:]):
        if previous.overlaps_with(current):
            raise ValidationError(f"Requested slots overlap each other: {previous} and {current}",
                                  field='time_slots', slot=current)


class _BookingHandler:
    def __init__(
        self,
        booking_repo: DjangoBookingRepository | None = None,
        space_repo: DjangoSpaceRepository | None = None,
        clock: Clock | None = None,
    ):
        self.booking_repo = booking_repo or DjangoBookingRepository()
        self.space_repo = space_repo or DjangoSpaceRepository()
        self.clock = clock or get_clock()

    def _load_locked(self, booking_id: UUID):
        """Lock the booking's space, then the booking itself."""
        booking = self.booking_repo.get(booking_id)
        space = self.space_repo.get(booking.space_id, lock=True)
        return space, self.booking_repo.get(booking_id, lock=True)

    def _reject_overlapping(self, uow, booking: Booking, statuses, now: datetime,
                            cooldown_minutes: int = 0) -> List[UUID]:
        conflicts = self.booking_repo.find_overlapping(
            booking.space_id,
            booking.time_slots,
            exclude_booking_id=booking.id,
            statuses=statuses,
            cooldown_minutes=cooldown_minutes,
            lock=True,
        )
        rejected = []
        for conflict in conflicts:
            competitor = conflict.booking
            competitor.reject(None, now, reason=COMPETITOR_REJECTION_REASON)
            self.booking_repo.save(competitor)
            uow.collect_events(competitor)
            rejected.append(competitor.id)
        if rejected:
            logger.info(
                "Rejected %d competing booking(s) for %s: %s",
                len(rejected), booking.unique_request_id, [str(i) for i in rejected],
            )
        return rejected

    def _ensure_not_blocked(self, booking: Booking, statuses, action: str, cooldown_minutes: int = 0):
        blocking = self.booking_repo.find_overlapping(
            booking.space_id,
            booking.time_slots,
            exclude_booking_id=booking.id,
            statuses=statuses,
            cooldown_minutes=cooldown_minutes,
        )
        if blocking:
            conflict = blocking[0]
            raise ConflictError(
                f"Cannot {action} booking {booking.unique_request_id}: "
                f"{conflict.proposed_slot} overlaps booking {conflict.booking.unique_request_id} "
                f"({conflict.booking.status.value})",
                conflicting_slot=conflict.proposed_slot,
                conflicting_booking_id=conflict.booking.id,
            )


# ===== Command Handlers =====

class CreateBookingHandler(_BookingHandler):
    """
    Handler for CreateBooking command

    1. Only clients book; the space must be active and fit the guests
    2. Every slot is checked by the availability engine
    3. Under the space row lock, slots overlapping a selected or approved
       booking (cooldown included) raise ``ConflictError``
    4. The booking is stored as ``pending``
    """

    def handle(self, command: CreateBookingCommand) -> Booking:
        actor = command.actor
        if actor.role is not ActorRole.CLIENT:
            raise AuthorizationError("Only clients can create bookings")
        if not command.time_slots:
            raise ValidationError("At least one time slot is required", field='time_slots')
        _ensure_distinct_slots(command.time_slots)

        now = self.clock.now()
        with DjangoUnitOfWork() as uow:
            space = self.space_repo.get(command.space_id, lock=True)
            if space.status != space.Status.ACTIVE:
                raise ValidationError(f"Space {space.pk} is not open for booking", field='space')
            if command.num_of_guests > space.max_guests:
                raise ValidationError(
                    f"Number of guests ({command.num_of_guests}) exceeds the space capacity ({space.max_guests})",
                    field='num_of_guests',
                )

            rules = space.availability_rules()
            for slot in command.time_slots:
                validate_slot(slot, rules, self.clock)

            conflicts = self.booking_repo.find_overlapping(
                space.pk,
                command.time_slots,
                statuses=BLOCKING_STATUSES,
                cooldown_minutes=rules.cooldown_minutes,
            )
            if conflicts:
                conflict = conflicts[0]
                logger.info(
                    "Booking request for space %s conflicts with %s at %s",
                    space.pk, conflict.booking.unique_request_id, conflict.proposed_slot,
                )
                raise ConflictError(
                    f"Time slot {conflict.proposed_slot} is already booked",
                    conflicting_slot=conflict.proposed_slot,
                    conflicting_booking_id=conflict.booking.id,
                )

            total, fee, final = calculate_price(space.price, command.time_slots, space.currency)
            booking = Booking(
                space_id=space.pk,
                host_id=space.owner_id,
                user_id=actor.user_id,
                time_slots=tuple(command.time_slots),
                unique_request_id=generate_request_id(now),
                total_price=total,
                service_fee=fee,
                final_total=final,
                guest_name=command.guest_name,
                guest_phone=command.guest_phone,
                num_of_guests=command.num_of_guests,
                created_at=now,
                updated_at=now,
            )
            booking.add_event(BookingCreated(
                aggregate_id=booking.id,
                booking_id=booking.id,
                space_id=booking.space_id,
                user_id=booking.user_id,
                unique_request_id=booking.unique_request_id,
            ))
            self.booking_repo.save(booking)
            uow.collect_events(booking)

        logger.info(
            "Booking %s created for space %s by user %s (%d slot(s), %s)",
            booking.unique_request_id, booking.space_id, booking.user_id,
            len(booking.time_slots), booking.final_total,
        )
        return booking


class SelectBookingHandler(_BookingHandler):
    """
    pending -> selected

    The selection and the rejection of every other overlapping pending
    request (cooldown included) commit together or not at all.
    """

    def handle(self, command: SelectBookingCommand) -> Booking:
        now = self.clock.now()
        with DjangoUnitOfWork() as uow:
            space, booking = self._load_locked(command.booking_id)
            cooldown = space.availability_rules().cooldown_minutes
            booking.select(command.actor, now)
            self._ensure_not_blocked(booking, BLOCKING_STATUSES, 'select', cooldown)
            rejected = self._reject_overlapping(uow, booking, {BookingStatus.PENDING}, now, cooldown)
            booking.add_event(BookingSelected(
                aggregate_id=booking.id,
                booking_id=booking.id,
                space_id=booking.space_id,
                selected_by=command.actor.user_id,
                rejected_booking_ids=tuple(rejected),
            ))
            self.booking_repo.save(booking)
            uow.collect_events(booking)

        logger.info("Booking %s selected by user %s", booking.unique_request_id, command.actor.user_id)
        return booking


class ApproveBookingHandler(_BookingHandler):
    """
    pending/selected -> approved

    A selected booking needs a PAID transaction; otherwise the host must
    send an explicit override with a reason. Other overlapping pending or
    selected requests are rejected in the same transaction.
    """

    def __init__(self, *args, payment_lookup: Callable[[UUID], bool] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.payment_lookup = payment_lookup or has_paid_transaction

    def handle(self, command: ApproveBookingCommand) -> Booking:
        override_reason = command.override_reason.strip() if command.payment_override else ''
        if command.payment_override and not override_reason:
            raise ValidationError("An override reason is required to approve without payment",
                                  field='override_reason')

        now = self.clock.now()
        with DjangoUnitOfWork() as uow:
            space, booking = self._load_locked(command.booking_id)
            cooldown = space.availability_rules().cooldown_minutes
            paid = self.payment_lookup(booking.id)
            booking.approve(command.actor, now, payment_confirmed=paid, override_reason=override_reason)
            self._ensure_not_blocked(booking, {BookingStatus.APPROVED}, 'approve', cooldown)
            self._reject_overlapping(uow, booking, {BookingStatus.PENDING, BookingStatus.SELECTED}, now, cooldown)
            self.booking_repo.save(booking)
            uow.collect_events(booking)

        if booking.payment_override_reason and booking.payment_override_by == command.actor.user_id:
            logger.warning(
                "Booking %s approved WITHOUT recorded payment by user %s (%s): %s",
                booking.unique_request_id, command.actor.user_id, command.actor.role.value,
                booking.payment_override_reason,
            )
        else:
            logger.info("Booking %s approved by user %s", booking.unique_request_id, command.actor.user_id)
        return booking


class RejectBookingHandler(_BookingHandler):

    def handle(self, command: RejectBookingCommand) -> Booking:
        now = self.clock.now()
        with DjangoUnitOfWork() as uow:
            booking = self.booking_repo.get(command.booking_id, lock=True)
            booking.reject(command.actor, now, reason=command.reason)
            self.booking_repo.save(booking)
            uow.collect_events(booking)

        logger.info("Booking %s rejected by user %s", booking.unique_request_id, command.actor.user_id)
        return booking


class CancelBookingHandler(_BookingHandler):

    def handle(self, command: CancelBookingCommand) -> Booking:
        now = self.clock.now()
        with DjangoUnitOfWork() as uow:
            booking = self.booking_repo.get(command.booking_id, lock=True)
            booking.cancel(command.actor, now)
            self.booking_repo.save(booking)
            uow.collect_events(booking)

        logger.info("Booking %s cancelled by user %s", booking.unique_request_id, command.actor.user_id)
        return booking


class ConfirmBookingPaymentHandler(_BookingHandler):
    """
    Attach a PAID transaction to its booking.

    pending/selected become approved; an approved booking only gets a
    missing ``paid_at``. Rejected or cancelled bookings, and bookings whose
    slot already went to another approved request, are left as they are
    and logged for manual follow-up. Runs as a savepoint when called from
    reconciliation.
    """

    def handle(self, command: ConfirmBookingPaymentCommand) -> PaymentConfirmationOutcome:
        now = self.clock.now()
        paid_at = command.paid_at or now
        with DjangoUnitOfWork() as uow:
            space, booking = self._load_locked(command.booking_id)
            cooldown = space.availability_rules().cooldown_minutes

            if booking.status in (BookingStatus.REJECTED, BookingStatus.CANCELLED):
                logger.error(
                    "PAID %s transaction for %s booking %s; left unchanged for manual follow-up",
                    command.provider, booking.status.value, booking.unique_request_id,
                )
                return PaymentConfirmationOutcome.SKIPPED_FINALIZED

            if booking.status is not BookingStatus.APPROVED:
                try:
                    self._ensure_not_blocked(booking, {BookingStatus.APPROVED}, 'approve', cooldown)
                except ConflictError as exc:
                    logger.error(
                        "PAID %s transaction for booking %s cannot approve it: %s",
                        command.provider, booking.unique_request_id, exc.message,
                    )
                    return PaymentConfirmationOutcome.SKIPPED_CONFLICT

            approved_now = booking.confirm_payment(paid_at, now, command.snapshot)
            if approved_now:
                self._reject_overlapping(uow, booking, {BookingStatus.PENDING, BookingStatus.SELECTED}, now, cooldown)
            self.booking_repo.save(booking)
            uow.collect_events(booking)

        if approved_now:
            logger.info("Booking %s approved by %s payment", booking.unique_request_id, command.provider)
            return PaymentConfirmationOutcome.APPROVED
        logger.info("Booking %s already approved; payment from %s recorded", booking.unique_request_id,
                    command.provider)
        return PaymentConfirmationOutcome.ALREADY_APPROVED


def handle_confirm_booking_payment(command: ConfirmBookingPaymentCommand) -> PaymentConfirmationOutcome:
    return ConfirmBookingPaymentHandler().handle(command)
