"""Host decisions and payment confirmation against other held bookings."""

from __future__ import annotations

from django.test import TestCase

from apps.bookings.application.command_handlers import (
    COMPETITOR_REJECTION_REASON,
    ApproveBookingCommand,
    ApproveBookingHandler,
    ConfirmBookingPaymentCommand,
    ConfirmBookingPaymentHandler,
    PaymentConfirmationOutcome,
    SelectBookingCommand,
    SelectBookingHandler,
)
from apps.bookings.domain.entities import Actor
from apps.bookings.models import Booking
from apps.users.models import User
from shared.domain.exceptions import ConflictError

from .factories import create_booking, fixed_clock, make_space, make_user, slot


class HostDecisionTests(TestCase):

    def setUp(self) -> None:
        self.host = make_user("host@example.com", "+998900000301", User.RoleChoices.HOST)
        self.client_a = make_user("a@example.com", "+998900000302", User.RoleChoices.CLIENT)
        self.client_b = make_user("b@example.com", "+998900000303", User.RoleChoices.CLIENT)
        self.space = make_space(self.host)
        self.clock = fixed_clock()
        self.host_actor = Actor.from_user(self.host)

    def _create(self, client: User, start: int, end: int):
        return create_booking(self.space, client, [slot(start=start, end=end)], clock=self.clock)

    def _select(self, booking_id):
        return SelectBookingHandler(clock=self.clock).handle(
            SelectBookingCommand(booking_id=booking_id, actor=self.host_actor)
        )

    def _force_status(self, booking_id, status: str) -> None:
        Booking.objects.filter(pk=booking_id).update(status=status)

    def _status(self, booking_id) -> str:
        return Booking.objects.get(pk=booking_id).status

    def test_select_rejects_overlapping_pending_request(self) -> None:
        a = self._create(self.client_a, 14, 16)
        b = self._create(self.client_b, 13, 15)

        self._select(a.id)

        self.assertEqual(self._status(a.id), Booking.Status.SELECTED)
        self.assertEqual(self._status(b.id), Booking.Status.REJECTED)
        self.assertEqual(Booking.objects.get(pk=b.id).rejection_reason, COMPETITOR_REJECTION_REASON)

    def test_select_rejects_request_inside_cooldown(self) -> None:
        a = self._create(self.client_a, 10, 12)
        b = self._create(self.client_b, 12, 13)
        later = self._create(self.client_b, 13, 14)

        self._select(a.id)

        self.assertEqual(self._status(b.id), Booking.Status.REJECTED)
        self.assertEqual(self._status(later.id), Booking.Status.PENDING)

    def test_select_refused_when_overlap_already_selected(self) -> None:
        a = self._create(self.client_a, 10, 12)
        b = self._create(self.client_b, 11, 13)
        self._force_status(a.id, Booking.Status.SELECTED)

        with self.assertRaises(ConflictError) as ctx:
            self._select(b.id)

        self.assertEqual(ctx.exception.conflicting_booking_id, a.id)
        self.assertEqual(self._status(b.id), Booking.Status.PENDING)
        self.assertEqual(self._status(a.id), Booking.Status.SELECTED)

    def test_select_refused_inside_cooldown_of_selected_booking(self) -> None:
        a = self._create(self.client_a, 10, 12)
        b = self._create(self.client_b, 12, 13)
        self._force_status(a.id, Booking.Status.SELECTED)

        with self.assertRaises(ConflictError):
            self._select(b.id)

        self.assertEqual(self._status(b.id), Booking.Status.PENDING)

    def test_approve_refused_when_overlap_already_approved(self) -> None:
        a = self._create(self.client_a, 10, 12)
        b = self._create(self.client_b, 11, 13)
        self._force_status(a.id, Booking.Status.APPROVED)

        with self.assertRaises(ConflictError):
            ApproveBookingHandler(clock=self.clock, payment_lookup=lambda booking_id: True).handle(
                ApproveBookingCommand(booking_id=b.id, actor=self.host_actor)
            )

        self.assertEqual(self._status(b.id), Booking.Status.PENDING)
        self.assertEqual(self._status(a.id), Booking.Status.APPROVED)

    def test_approve_rejects_selected_request_inside_cooldown(self) -> None:
        a = self._create(self.client_a, 10, 12)
        b = self._create(self.client_b, 12, 13)
        self._force_status(b.id, Booking.Status.SELECTED)

        ApproveBookingHandler(clock=self.clock, payment_lookup=lambda booking_id: False).handle(
            ApproveBookingCommand(booking_id=a.id, actor=self.host_actor)
        )

        self.assertEqual(self._status(a.id), Booking.Status.APPROVED)
        self.assertEqual(self._status(b.id), Booking.Status.REJECTED)

    def test_payment_skips_booking_whose_slot_was_approved_elsewhere(self) -> None:
        a = self._create(self.client_a, 10, 12)
        b = self._create(self.client_b, 11, 13)
        self._force_status(a.id, Booking.Status.APPROVED)
        self._force_status(b.id, Booking.Status.SELECTED)

        outcome = ConfirmBookingPaymentHandler(clock=self.clock).handle(
            ConfirmBookingPaymentCommand(booking_id=b.id, provider="click")
        )

        self.assertIs(outcome, PaymentConfirmationOutcome.SKIPPED_CONFLICT)
        self.assertEqual(self._status(b.id), Booking.Status.SELECTED)
        self.assertIsNone(Booking.objects.get(pk=b.id).paid_at)
