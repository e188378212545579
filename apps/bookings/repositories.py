"""
Booking repositories

Map ``apps.bookings.models`` rows to the ``Booking`` aggregate and back.
Overlap queries narrow candidates in the database (same space, a slot on
one of the requested dates, wanted status); the final overlap decision is
made by ``apps.bookings.domain.conflicts``.

``lock=True`` issues ``SELECT ... FOR UPDATE`` and must run inside a
``DjangoUnitOfWork``.
"""

from typing import Iterable, List, Optional
from uuid import UUID
import logging

from django.core.exceptions import ValidationError as DjangoValidationError

from apps.bookings.domain.conflicts import Conflict, find_overlapping
from apps.bookings.domain.entities import LIVE_STATUSES, Booking, BookingStatus
from apps.bookings.models import Booking as BookingModel
from apps.bookings.models import BookingTimeSlot
from apps.spaces.models import Space
from shared.domain.exceptions import NotFoundError
from shared.domain.value_objects import Money, TimeSlot

logger = logging.getLogger(__name__)


class DjangoSpaceRepository:
    """Spaces are read-only to the booking core; locking one serialises its bookings."""

    def get(self, space_id: int, lock: bool = False) -> Space:
        queryset = Space.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=space_id)
        except Space.DoesNotExist:
            raise NotFoundError(f"Space {space_id} not found")


class DjangoBookingRepository:

    def _queryset(self, lock: bool = False):
        queryset = BookingModel.objects.all()
        if lock:
            return queryset.select_for_update()
        return queryset.select_related('space')

    def get(self, booking_id: UUID, lock: bool = False) -> Booking:
        try:
            model = self._queryset(lock).get(pk=booking_id)
        except (BookingModel.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(f"Booking {booking_id} not found")
        return self._to_domain(model)

    def get_by_reference(self, reference: str, lock: bool = False) -> Booking:
        """Booking by ``unique_request_id`` (``REQ-...``) or by UUID."""
        reference = str(reference).strip()
        queryset = self._queryset(lock)
        model = queryset.filter(unique_request_id=reference).first()
        if model is None:
            try:
                model = queryset.filter(pk=UUID(reference)).first()
            except ValueError:
                model = None
        if model is None:
            raise NotFoundError(f"Booking {reference} not found")
        return self._to_domain(model)

    def exists(self, booking_id: UUID) -> bool:
        return BookingModel.objects.filter(pk=booking_id).exists()

    def candidates(
        self,
        space_id: int,
        dates: Iterable,
        *,
        statuses: Iterable[BookingStatus] = LIVE_STATUSES,
        exclude_booking_id: Optional[UUID] = None,
        lock: bool = False,
    ) -> List[Booking]:
        """Bookings of the space with the given statuses and a slot on one of ``dates``."""
        slot_booking_ids = BookingTimeSlot.objects.filter(
            date__in=set(dates),
            booking__space_id=space_id,
        ).values('booking_id')
        queryset = self._queryset(lock).filter(
            space_id=space_id,
            status__in=[status.value for status in statuses],
            id__in=slot_booking_ids,
        )
        if exclude_booking_id is not None:
            queryset = queryset.exclude(pk=exclude_booking_id)
        return [self._to_domain(model) for model in queryset.order_by('created_at')]

    def find_overlapping(
        self,
        space_id: int,
        slots: Iterable[TimeSlot],
        *,
        exclude_booking_id: Optional[UUID] = None,
        statuses: Iterable[BookingStatus] = LIVE_STATUSES,
        cooldown_minutes: int = 0,
        lock: bool = False,
    ) -> List[Conflict]:
        """Live bookings of the space with a slot overlapping one of ``slots``."""
        slots = list(slots)
        statuses = frozenset(statuses)
        candidates = self.candidates(
            space_id,
            {slot.date for slot in slots},
            statuses=statuses,
            exclude_booking_id=exclude_booking_id,
            lock=lock,
        )
        return find_overlapping(
            slots,
            candidates,
            exclude_booking_id=exclude_booking_id,
            statuses=statuses,
            cooldown_minutes=cooldown_minutes,
        )

    def save(self, booking: Booking) -> None:
        defaults = {
            'user_id': booking.user_id,
            'space_id': booking.space_id,
            'unique_request_id': booking.unique_request_id,
            'status': booking.status.value,
            'check_in_date': booking.check_in_date,
            'check_out_date': booking.check_out_date,
            'num_of_guests': booking.num_of_guests,
            'guest_name': booking.guest_name,
            'guest_phone': booking.guest_phone,
            'total_price': booking.total_price.amount,
            'service_fee': booking.service_fee.amount,
            'final_total': booking.final_total.amount,
            'currency': booking.total_price.currency,
            'selected_at': booking.selected_at,
            'approved_at': booking.approved_at,
            'rejected_at': booking.rejected_at,
            'cancelled_at': booking.cancelled_at,
            'paid_at': booking.paid_at,
            'rejection_reason': booking.rejection_reason,
            'payment_response': booking.payment_response or {},
            'payment_override_by_id': booking.payment_override_by,
            'payment_override_reason': booking.payment_override_reason,
        }
        model, created = BookingModel.objects.update_or_create(id=booking.id, defaults=defaults)
        if created:
            # slots are written once; they never change afterwards
            BookingTimeSlot.objects.bulk_create([
                BookingTimeSlot(
                    booking=model,
                    date=slot.date,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    day_of_week=slot.day_of_week,
                )
                for slot in booking.time_slots
            ])
        booking.created_at = model.created_at
        booking.updated_at = model.updated_at

    def _to_domain(self, model: BookingModel) -> Booking:
        slots = tuple(
            TimeSlot(date=slot.date, start_time=slot.start_time, end_time=slot.end_time)
            for slot in model.time_slots.all()
        )
        currency = model.currency or 'UZS'
        return Booking(
            id=model.id,
            created_at=model.created_at,
            updated_at=model.updated_at,
            space_id=model.space_id,
            host_id=model.space.owner_id,
            user_id=model.user_id,
            time_slots=slots,
            unique_request_id=model.unique_request_id,
            total_price=Money(model.total_price, currency),
            service_fee=Money(model.service_fee, currency),
            final_total=Money(model.final_total, currency),
            guest_name=model.guest_name,
            guest_phone=model.guest_phone,
            num_of_guests=model.num_of_guests,
            status=BookingStatus(model.status),
            selected_at=model.selected_at,
            approved_at=model.approved_at,
            rejected_at=model.rejected_at,
            cancelled_at=model.cancelled_at,
            paid_at=model.paid_at,
            rejection_reason=model.rejection_reason,
            payment_response=model.payment_response or {},
            payment_override_by=model.payment_override_by_id,
            payment_override_reason=model.payment_override_reason,
        )
