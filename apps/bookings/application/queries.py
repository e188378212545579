"""
Booking read side

Queries used by the API layer. They never lock and never mutate.
"""

from datetime import date, datetime, time, timedelta
from typing import List, Optional
import logging

from django.db.models import Count, Q

from apps.bookings.domain.availability import (
    AvailabilityRules,
    calendar_window,
    list_available_dates,
    list_available_start_times,
)
from apps.bookings.domain.entities import Actor, ActorRole, BookingStatus
from apps.bookings.models import Booking as BookingModel
from apps.bookings.models import BookingTimeSlot
from apps.bookings.repositories import DjangoBookingRepository
from apps.spaces.models import Space
from shared.domain.clock import Clock, get_clock
from shared.domain.exceptions import AuthorizationError, NotFoundError
from shared.domain.value_objects import TimeSlot

logger = logging.getLogger(__name__)

OPEN_STATUSES = (BookingStatus.PENDING.value, BookingStatus.SELECTED.value)


def visible_bookings(actor: Actor):
    """Bookings an actor may list: agents all, hosts their spaces', clients their own."""
    queryset = BookingModel.objects.select_related('space', 'user').prefetch_related('time_slots')
    if actor.role is ActorRole.AGENT:
        return queryset
    if actor.role is ActorRole.HOST:
        return queryset.filter(space__owner_id=actor.user_id)
    return queryset.filter(user_id=actor.user_id)


def _candidate_slot(day: date, start: time, hours: int) -> TimeSlot:
    end = datetime.combine(day, start) + timedelta(hours=max(hours, 1))
    end_time = end.time() if end.date() == day else time.max
    return TimeSlot(date=day, start_time=start, end_time=end_time)


def booked_slots(space_id: int, from_date: date) -> List[TimeSlot]:
    """Slots of approved bookings of the space from ``from_date`` on."""
    rows = BookingTimeSlot.objects.filter(
        booking__space_id=space_id,
        booking__status=BookingStatus.APPROVED.value,
        date__gte=from_date,
    ).order_by('date', 'start_time')
    return [TimeSlot(date=row.date, start_time=row.start_time, end_time=row.end_time) for row in rows]


def space_availability(space_id: int, day: Optional[date] = None, clock: Optional[Clock] = None) -> dict:
    """
    Everything a client needs to render the booking calendar of a space:
    bookable dates, start times still free on ``day`` (today by default),
    approved slots and the raw operating-hours configuration.
    """
    clock = clock or get_clock()
    try:
        space = Space.objects.get(pk=space_id)
    except Space.DoesNotExist:
        raise NotFoundError(f"Space {space_id} not found")

    rules = AvailabilityRules.from_space(space)
    today = clock.today()
    day = day or today
    window_start, window_end = calendar_window(rules, clock)
    dates = list_available_dates(window_start, window_end, rules.blocked_dates, rules.blocked_weekdays, clock)

    taken = booked_slots(space.pk, today)
    start_times = []
    if not rules.is_blocked(day) and window_start <= day <= window_end:
        taken_that_day = [slot for slot in taken if slot.date == day]
        for start in list_available_start_times(
            day, rules.hours_for(day), rules.minimum_hours, rules.cooldown_minutes, clock
        ):
            candidate = _candidate_slot(day, start, rules.minimum_hours)
            if not any(candidate.overlaps_with(slot, rules.cooldown_minutes) for slot in taken_that_day):
                start_times.append(start)

    return {
        'space_id': space.pk,
        'title': space.title,
        'timezone': clock.tz_name,
        'current_date': today,
        'date': day,
        'available_dates': dates,
        'available_start_times': start_times,
        'booked_slots': [slot.to_dict() for slot in taken],
        'operating_hours': {
            'check_in': space.check_in,
            'check_out': space.check_out,
            'weekday_time_slots': space.weekday_time_slots or {},
            'minimum_hours': rules.minimum_hours,
            'cooldown': rules.cooldown_minutes,
        },
        'blocked_dates': sorted(rules.blocked_dates),
        'blocked_weekdays': sorted(rules.blocked_weekdays),
    }


def competing_bookings(booking_id, actor: Actor, clock: Optional[Clock] = None):
    """
    Other pending or selected requests overlapping the booking.

    Requests whose every slot has already ended are left out.
    """
    clock = clock or get_clock()
    repo = DjangoBookingRepository()
    booking = repo.get(booking_id)
    if not actor.is_agent and not (actor.role is ActorRole.HOST and actor.user_id == booking.host_id):
        raise AuthorizationError("Only the space owner or an agent can see competing requests")

    conflicts = repo.find_overlapping(
        booking.space_id,
        booking.time_slots,
        exclude_booking_id=booking.id,
        statuses={BookingStatus.PENDING, BookingStatus.SELECTED},
    )
    now = clock.now()
    ids = [
        conflict.booking.id
        for conflict in conflicts
        if any(clock.localize(slot.date, slot.end_time) > now for slot in conflict.booking.time_slots)
    ]
    return visible_bookings(actor).filter(pk__in=ids).order_by('created_at')


def booking_counts(actor: Actor, clock: Optional[Clock] = None) -> dict:
    """Open requests (pending + selected) waiting for a host decision."""
    if actor.role is ActorRole.CLIENT:
        raise AuthorizationError("Booking counts are available to hosts and agents")
    clock = clock or get_clock()
    counts = visible_bookings(actor).filter(
        status__in=OPEN_STATUSES,
        check_out_date__gte=clock.today(),
    ).aggregate(
        pending=Count('id', filter=Q(status=BookingStatus.PENDING.value)),
        selected=Count('id', filter=Q(status=BookingStatus.SELECTED.value)),
    )
    counts['total'] = counts['pending'] + counts['selected']
    return counts
