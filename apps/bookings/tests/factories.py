"""Shared setup for booking and payment tests."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from apps.bookings.application.command_handlers import (
    CreateBookingCommand,
    CreateBookingHandler,
    SelectBookingCommand,
    SelectBookingHandler,
)
from apps.bookings.domain.entities import Actor
from apps.spaces.models import Space
from apps.users.models import User
from shared.domain.clock import FixedClock
from shared.domain.value_objects import TimeSlot

# Monday 2030-06-03, 10:15 local time
NOW = datetime(2030, 6, 3, 10, 15)
TOMORROW = date(2030, 6, 4)


def fixed_clock() -> FixedClock:
    return FixedClock(NOW)


def make_user(email: str, phone: str, role: str) -> User:
    return User.objects.create_user(email=email, phone=phone, password="Pass12345", role=role)


def make_space(owner: User, **overrides) -> Space:
    fields = {
        "owner": owner,
        "title": "Coworking room",
        "status": Space.Status.ACTIVE,
        "price": Decimal("50000.00"),
        "currency": "UZS",
        "max_guests": 4,
        "check_in": "09:00",
        "check_out": "17:00",
        "minimum_hours": 1,
        "cooldown": 30,
    }
    fields.update(overrides)
    return Space.objects.create(**fields)


def slot(day: date = TOMORROW, start: int = 10, end: int = 12) -> TimeSlot:
    return TimeSlot(date=day, start_time=time(start), end_time=time(end))


def create_booking(space: Space, client: User, slots=None, clock=None):
    clock = clock or fixed_clock()
    return CreateBookingHandler(clock=clock).handle(CreateBookingCommand(
        space_id=space.pk,
        actor=Actor.from_user(client),
        time_slots=list(slots or [slot()]),
        guest_name="Aziz",
        guest_phone="+998901234567",
    ))


def selected_booking(space: Space, client: User, slots=None, clock=None):
    clock = clock or fixed_clock()
    booking = create_booking(space, client, slots, clock)
    return SelectBookingHandler(clock=clock).handle(
        SelectBookingCommand(booking_id=booking.id, actor=Actor.from_user(space.owner))
    )
