"""Reconciler: provider events against the one-row-per-provider-and-booking store."""

from __future__ import annotations

from datetime import date

from django.test import TestCase

from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    PaymentConfirmationOutcome,
)
from apps.bookings.domain.entities import Actor
from apps.bookings.models import Booking
from apps.bookings.tests.factories import create_booking, make_user, slot
from apps.payments.application.reconciliation import ReconciliationEvent, Reconciler
from apps.payments.domain.entities import AlreadyPaid, CanonicalState, DuplicatePendingTransaction, Provider
from apps.payments.models import Transaction
from apps.payments.providers.base import get_adapter
from apps.payments.providers.click import ClickAdapter
from apps.payments.providers.octo import OctoAdapter
from apps.payments.providers.payme import PaymeAdapter
from apps.users.models import User
from shared.domain.exceptions import NotFoundError, StateError

from .base import PaymentFixturesMixin


class StatusMappingTests(TestCase):

    def test_every_provider_has_an_adapter(self) -> None:
        self.assertIsInstance(get_adapter(Provider.CLICK), ClickAdapter)
        self.assertIsInstance(get_adapter(Provider.PAYME), PaymeAdapter)
        self.assertIsInstance(get_adapter(Provider.OCTO), OctoAdapter)

    def test_click_statuses(self) -> None:
        adapter = ClickAdapter()
        self.assertIs(adapter.map_status(2), CanonicalState.PAID)
        self.assertIs(adapter.map_status("0"), CanonicalState.PENDING)
        self.assertIs(adapter.map_status(1), CanonicalState.PENDING)
        self.assertIs(adapter.map_status(-5017), CanonicalState.FAILED)
        self.assertIs(adapter.map_status("junk"), CanonicalState.FAILED)

    def test_payme_states(self) -> None:
        adapter = PaymeAdapter()
        self.assertIs(adapter.map_status(1), CanonicalState.PENDING)
        self.assertIs(adapter.map_status(2), CanonicalState.PAID)
        self.assertIs(adapter.map_status(-1), CanonicalState.FAILED)
        self.assertIs(adapter.map_status(-2), CanonicalState.FAILED)

    def test_octo_statuses(self) -> None:
        adapter = OctoAdapter()
        self.assertIs(adapter.map_status("succeeded"), CanonicalState.PAID)
        for status in ("created", "processing", "wait_user_action"):
            self.assertIs(adapter.map_status(status), CanonicalState.PENDING)
        self.assertIs(adapter.map_status("canceled"), CanonicalState.FAILED)
        self.assertIs(adapter.map_status(None), CanonicalState.FAILED)


class ReconcilerTests(PaymentFixturesMixin, TestCase):

    def setUp(self) -> None:
        super().setUp()
        self.reconciler = Reconciler(clock=self.clock)

    def _event(self, status, pid="click-1", provider=Provider.CLICK, **extra) -> ReconciliationEvent:
        return ReconciliationEvent(
            provider=provider,
            native_status=status,
            booking_id=self.booking.id,
            provider_transaction_id=pid,
            **extra,
        )

    def test_first_event_creates_the_row(self) -> None:
        result = self.reconciler.apply(self._event(0))

        self.assertTrue(result.created)
        self.assertIs(result.state, CanonicalState.PENDING)
        row = self.transaction_row("click")
        self.assertEqual(row.provider_transaction_id, "click-1")
        self.assertEqual(row.amount, self.booking.final_total.amount)
        self.assertEqual(row.user, self.customer)

    def test_paid_event_approves_the_booking(self) -> None:
        result = self.reconciler.apply(self._event(2, payload={"payment_id": 1}))

        self.assertTrue(result.changed)
        self.assertIs(result.booking_outcome, PaymentConfirmationOutcome.APPROVED)
        booking = self.booking_row()
        self.assertEqual(booking.status, Booking.Status.APPROVED)
        self.assertIsNotNone(booking.paid_at)
        self.assertEqual(booking.payment_response["provider"], "click")
        row = self.transaction_row("click")
        self.assertEqual(row.state, Transaction.State.PAID)
        self.assertEqual(row.perform_date, self.clock.now())
        self.assertEqual(row.provider_data["last_event"], {"payment_id": 1})

    def test_repeated_event_is_a_no_op(self) -> None:
        self.reconciler.apply(self._event(2))
        first_perform = self.transaction_row("click").perform_date

        self.clock.advance(minutes=5)
        result = self.reconciler.apply(self._event(2))

        self.assertFalse(result.created)
        self.assertFalse(result.changed)
        self.assertIs(result.booking_outcome, PaymentConfirmationOutcome.ALREADY_APPROVED)
        self.assertEqual(Transaction.objects.count(), 1)
        self.assertEqual(self.transaction_row("click").perform_date, first_perform)

    def test_terminal_state_is_never_downgraded(self) -> None:
        self.reconciler.apply(self._event(2))

        result = self.reconciler.apply(self._event(-9))

        self.assertFalse(result.changed)
        self.assertEqual(self.transaction_row("click").state, Transaction.State.PAID)

    def test_failed_event_leaves_booking_selected(self) -> None:
        result = self.reconciler.apply(self._event(-5017, cancel_reason=-5017))

        self.assertIs(result.state, CanonicalState.FAILED)
        row = self.transaction_row("click")
        self.assertEqual(row.cancel_reason, -5017)
        self.assertIsNotNone(row.cancel_date)
        self.assertEqual(self.booking_row().status, Booking.Status.SELECTED)

    def test_bad_signature_is_flagged_and_stays_flagged(self) -> None:
        self.reconciler.apply(self._event(0, signature_valid=False))
        result = self.reconciler.apply(self._event(2))

        self.assertIs(result.state, CanonicalState.PAID)
        self.assertFalse(self.transaction_row("click").signature_valid)

    def test_event_for_unknown_payment_without_booking(self) -> None:
        with self.assertRaises(NotFoundError):
            self.reconciler.apply(ReconciliationEvent(
                provider=Provider.OCTO,
                native_status="succeeded",
                provider_transaction_id="unknown",
            ))
        self.assertFalse(Transaction.objects.exists())

    def test_superseded_attempt_is_ignored_unless_paid(self) -> None:
        self.reconciler.apply(self._event(0, pid="old"))
        self.reconciler.open_attempt(Provider.CLICK, self.booking.id, provider_transaction_id="new")

        ignored = self.reconciler.apply(self._event(-1, pid="old"))
        self.assertFalse(ignored.changed)
        self.assertEqual(self.transaction_row("click").state, Transaction.State.PENDING)

        paid = self.reconciler.apply(self._event(2, pid="old"))
        self.assertIs(paid.state, CanonicalState.PAID)
        row = self.transaction_row("click")
        self.assertEqual(row.provider_transaction_id, "old")
        self.assertEqual(len(row.provider_data["previous_attempts"]), 2)

    def test_second_payment_is_logged_and_not_applied(self) -> None:
        self.reconciler.apply(self._event(2, pid="click-1", updates={"merchant_prepare_id": 11}))

        with self.assertLogs("apps.payments.application.reconciliation", level="ERROR") as logs:
            result = self.reconciler.apply(self._event(2, pid="click-2", updates={"merchant_prepare_id": 99}))
        self.reconciler.apply(self._event(2, pid="click-2", updates={"merchant_prepare_id": 99}))

        self.assertIn("Double payment", logs.output[0])
        self.assertFalse(result.changed)
        self.assertIsNone(result.booking_outcome)
        row = self.transaction_row("click")
        self.assertEqual(row.provider_transaction_id, "click-1")
        self.assertEqual(row.merchant_prepare_id, 11)
        self.assertEqual(row.state, Transaction.State.PAID)
        [extra] = row.provider_data["extra_payments"]
        self.assertEqual(extra["provider_transaction_id"], "click-2")

    def test_paid_for_cancelled_booking_is_recorded_but_booking_untouched(self) -> None:
        CancelBookingHandler(clock=self.clock).handle(
            CancelBookingCommand(booking_id=self.booking.id, actor=Actor.from_user(self.customer))
        )

        result = self.reconciler.apply(self._event(2))

        self.assertIs(result.state, CanonicalState.PAID)
        self.assertIs(result.booking_outcome, PaymentConfirmationOutcome.SKIPPED_FINALIZED)
        self.assertEqual(self.booking_row().status, Booking.Status.CANCELLED)

    def test_payment_for_pending_request_rejects_overlapping_ones(self) -> None:
        other_client = make_user("other@example.com", "+998900000199", User.RoleChoices.CLIENT)
        paid = create_booking(self.space, self.customer, [slot(start=14, end=16)], clock=self.clock)
        overlapping = create_booking(self.space, other_client, [slot(start=15, end=16)], clock=self.clock)
        within_cooldown = create_booking(self.space, other_client, [slot(start=13, end=14)], clock=self.clock)
        next_day = create_booking(self.space, other_client, [slot(day=date(2030, 6, 5), start=14, end=16)],
                                  clock=self.clock)

        result = self.reconciler.apply(ReconciliationEvent(
            provider=Provider.PAYME,
            native_status=2,
            booking_id=paid.id,
            provider_transaction_id="pm-paid",
        ))

        self.assertIs(result.booking_outcome, PaymentConfirmationOutcome.APPROVED)
        self.assertEqual(Booking.objects.get(pk=paid.id).status, Booking.Status.APPROVED)
        self.assertEqual(Booking.objects.get(pk=overlapping.id).status, Booking.Status.REJECTED)
        self.assertEqual(Booking.objects.get(pk=within_cooldown.id).status, Booking.Status.REJECTED)
        self.assertEqual(Booking.objects.get(pk=next_day.id).status, Booking.Status.PENDING)


class OpenAttemptTests(PaymentFixturesMixin, TestCase):

    def setUp(self) -> None:
        super().setUp()
        self.reconciler = Reconciler(clock=self.clock)

    def test_opens_pending_row(self) -> None:
        txn = self.reconciler.open_attempt(Provider.PAYME, self.booking.id, provider_transaction_id="pm-1",
                                           provider_create_time=123)

        self.assertIs(txn.state, CanonicalState.PENDING)
        row = self.transaction_row("payme")
        self.assertEqual(row.provider_transaction_id, "pm-1")
        self.assertEqual(row.provider_create_time, 123)

    def test_failed_row_is_rearmed(self) -> None:
        self.reconciler.apply(ReconciliationEvent(
            provider=Provider.PAYME, native_status=-1, booking_id=self.booking.id, provider_transaction_id="pm-1",
        ))

        txn = self.reconciler.open_attempt(Provider.PAYME, self.booking.id, provider_transaction_id="pm-2")

        self.assertIs(txn.state, CanonicalState.PENDING)
        self.assertEqual(Transaction.objects.count(), 1)
        row = self.transaction_row("payme")
        self.assertEqual(row.provider_transaction_id, "pm-2")
        self.assertIsNone(row.cancel_reason)
        self.assertEqual(row.provider_data["previous_attempts"][0]["provider_transaction_id"], "pm-1")

    def test_concurrent_attempt_can_be_refused(self) -> None:
        self.reconciler.open_attempt(Provider.PAYME, self.booking.id, provider_transaction_id="pm-1")

        with self.assertRaises(DuplicatePendingTransaction):
            self.reconciler.open_attempt(Provider.PAYME, self.booking.id, provider_transaction_id="pm-2",
                                         allow_concurrent=False)
        self.assertEqual(self.transaction_row("payme").provider_transaction_id, "pm-1")

    def test_paid_booking_refuses_new_attempts(self) -> None:
        self.reconciler.apply(ReconciliationEvent(
            provider=Provider.CLICK, native_status=2, booking_id=self.booking.id, provider_transaction_id="c-1",
        ))

        with self.assertRaises(AlreadyPaid):
            self.reconciler.open_attempt(Provider.OCTO, self.booking.id)

    def test_pending_booking_is_not_payable(self) -> None:
        booking = create_booking(self.space, self.customer, [slot(start=14, end=15)], clock=self.clock)

        with self.assertRaises(StateError):
            self.reconciler.open_attempt(Provider.CLICK, booking.id)
        self.assertFalse(Transaction.objects.filter(booking_id=booking.id).exists())
