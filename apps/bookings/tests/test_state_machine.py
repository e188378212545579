"""Booking aggregate transitions."""

from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from apps.bookings.domain.entities import Actor, ActorRole, Booking, BookingStatus, generate_request_id
from apps.bookings.domain.events import BookingApproved, BookingPaid, BookingRejected
from shared.domain.exceptions import (
    AlreadyFinalized,
    AuthorizationError,
    PaymentConfirmationRequired,
    StateError,
)
from shared.domain.value_objects import Money, TimeSlot

NOW = datetime(2030, 6, 3, 10, 15, tzinfo=ZoneInfo("Asia/Tashkent"))

HOST = Actor(user_id=10, role=ActorRole.HOST)
OTHER_HOST = Actor(user_id=11, role=ActorRole.HOST)
AGENT = Actor(user_id=99, role=ActorRole.AGENT)
CLIENT = Actor(user_id=20, role=ActorRole.CLIENT)


def make_booking(**overrides) -> Booking:
    fields = {
        "space_id": 1,
        "host_id": HOST.user_id,
        "user_id": CLIENT.user_id,
        "time_slots": (TimeSlot(date(2030, 6, 4), time(10), time(12)),),
        "unique_request_id": "REQ-TEST-00001",
        "total_price": Money("100000"),
    }
    fields.update(overrides)
    return Booking(**fields)


def test_request_id_format() -> None:
    request_id = generate_request_id(NOW)

    prefix, timestamp, suffix = request_id.split("-")
    assert prefix == "REQ"
    assert timestamp.isalnum() and timestamp.isupper()
    assert len(suffix) == 5


def test_final_total_defaults_to_total_price() -> None:
    booking = make_booking()

    assert booking.final_total == Money("100000")
    assert booking.check_in_date == date(2030, 6, 4)


def test_host_selects_pending_booking() -> None:
    booking = make_booking()

    booking.select(HOST, NOW)

    assert booking.status is BookingStatus.SELECTED
    assert booking.selected_at == NOW
    assert booking.awaiting_payment


def test_agent_can_decide_for_any_host() -> None:
    booking = make_booking()

    booking.approve(AGENT, NOW)

    assert booking.status is BookingStatus.APPROVED
    assert booking.approved_at == NOW


@pytest.mark.parametrize("actor", [OTHER_HOST, CLIENT])
def test_only_owner_or_agent_can_select(actor: Actor) -> None:
    booking = make_booking()

    with pytest.raises(AuthorizationError):
        booking.select(actor, NOW)
    assert booking.status is BookingStatus.PENDING


def test_selected_booking_needs_payment_to_be_approved() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)

    with pytest.raises(PaymentConfirmationRequired) as excinfo:
        booking.approve(HOST, NOW)

    assert excinfo.value.to_dict()["requires_payment_check"] is True
    assert booking.status is BookingStatus.SELECTED


def test_selected_booking_approved_with_confirmed_payment() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)

    booking.approve(HOST, NOW, payment_confirmed=True)

    assert booking.status is BookingStatus.APPROVED
    assert booking.payment_override_by is None


def test_override_is_recorded_and_announced() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)
    booking.clear_events()

    booking.approve(HOST, NOW, override_reason="  paid in cash at the desk ")

    assert booking.status is BookingStatus.APPROVED
    assert booking.payment_override_by == HOST.user_id
    assert booking.payment_override_reason == "paid in cash at the desk"
    assert booking.awaiting_payment
    [event] = booking.events
    assert isinstance(event, BookingApproved)
    assert event.payment_override is True
    assert event.override_reason == "paid in cash at the desk"


def test_blank_override_reason_does_not_count() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)

    with pytest.raises(PaymentConfirmationRequired):
        booking.approve(HOST, NOW, override_reason="   ")


@pytest.mark.parametrize(
    "finish",
    [
        lambda b: b.approve(HOST, NOW),
        lambda b: b.reject(HOST, NOW, reason="busy"),
        lambda b: b.cancel(CLIENT, NOW),
    ],
)
def test_final_states_never_change(finish) -> None:
    booking = make_booking()
    finish(booking)

    with pytest.raises(AlreadyFinalized):
        booking.select(HOST, NOW)
    with pytest.raises(AlreadyFinalized):
        booking.reject(HOST, NOW)
    with pytest.raises(AlreadyFinalized):
        booking.cancel(CLIENT, NOW)


def test_selected_cannot_be_selected_again() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)

    with pytest.raises(StateError) as excinfo:
        booking.select(HOST, NOW)

    assert not isinstance(excinfo.value, AlreadyFinalized)
    assert excinfo.value.current_status == "selected"


def test_system_rejection_has_no_actor() -> None:
    booking = make_booking()

    booking.reject(None, NOW, reason="Another request was chosen")

    assert booking.status is BookingStatus.REJECTED
    assert booking.rejection_reason == "Another request was chosen"
    event = booking.events[-1]
    assert isinstance(event, BookingRejected)
    assert event.rejected_by is None


def test_only_requesting_client_cancels() -> None:
    booking = make_booking()

    with pytest.raises(AuthorizationError):
        booking.cancel(Actor(user_id=21, role=ActorRole.CLIENT), NOW)
    with pytest.raises(AuthorizationError):
        booking.cancel(HOST, NOW)

    booking.cancel(CLIENT, NOW)
    assert booking.status is BookingStatus.CANCELLED
    assert booking.cancelled_at == NOW


def test_payment_approves_selected_booking() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)
    booking.clear_events()

    approved = booking.confirm_payment(NOW, NOW, {"provider": "payme"})

    assert approved is True
    assert booking.status is BookingStatus.APPROVED
    assert booking.paid_at == NOW
    assert booking.payment_response == {"provider": "payme"}
    assert [type(e) for e in booking.events] == [BookingPaid, BookingApproved]
    assert not booking.awaiting_payment


def test_payment_approval_uses_settlement_time() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)
    settled = datetime(2030, 6, 3, 9, 58, tzinfo=ZoneInfo("Asia/Tashkent"))

    booking.confirm_payment(settled, NOW)

    assert booking.paid_at == settled
    assert booking.approved_at == settled
    assert booking.updated_at == NOW


def test_payment_on_override_approval_only_fills_paid_at() -> None:
    booking = make_booking()
    booking.select(HOST, NOW)
    booking.approve(HOST, NOW, override_reason="trusted client")

    assert booking.confirm_payment(NOW, NOW) is False
    assert booking.paid_at == NOW
    assert booking.confirm_payment(NOW, NOW) is False


def test_payment_on_cancelled_booking_raises() -> None:
    booking = make_booking()
    booking.cancel(CLIENT, NOW)

    with pytest.raises(AlreadyFinalized):
        booking.confirm_payment(NOW, NOW)


def test_overlap_detection_between_bookings() -> None:
    first = make_booking()
    second = make_booking(
        unique_request_id="REQ-TEST-00002",
        time_slots=(TimeSlot(date(2030, 6, 4), time(11), time(13)),),
    )
    later = make_booking(
        unique_request_id="REQ-TEST-00003",
        time_slots=(TimeSlot(date(2030, 6, 4), time(12), time(13)),),
    )
    elsewhere = make_booking(space_id=2, unique_request_id="REQ-TEST-00004")

    assert first.overlaps(second)
    assert not first.overlaps(later)
    assert first.overlaps(later, cooldown_minutes=30)
    assert not first.overlaps(elsewhere)
