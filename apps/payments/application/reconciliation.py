"""
Payment reconciliation

Every provider adapter turns its wire protocol into ``ReconciliationEvent``
values and hands them to ``Reconciler.apply``. The reconciler keeps one
Transaction row per (provider, booking), moves it along the canonical
states and, once it is PAID, asks the bookings context to approve the
booking through ``ConfirmBookingPaymentCommand``.

Lock order: the Transaction row first, then (inside the booking command)
the space and the booking.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID
import logging

from django.db import IntegrityError, transaction as db_transaction

from apps.bookings.application.command_handlers import (
    ConfirmBookingPaymentCommand,
    PaymentConfirmationOutcome,
)
from apps.bookings.repositories import DjangoBookingRepository
from apps.payments.domain.entities import (
    AlreadyPaid,
    CanonicalState,
    DuplicatePendingTransaction,
    Provider,
    Transaction,
)
from apps.payments.domain.events import TransactionOpened
from apps.payments.providers.base import get_adapter
from apps.payments.repositories import DjangoTransactionRepository
from shared.application.uow import DjangoUnitOfWork
from shared.domain.clock import Clock, get_clock
from shared.domain.exceptions import NotFoundError, StateError
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationEvent:
    """
    One inbound payment fact, provider-agnostic.

    ``native_status`` is whatever the provider sent; the provider's adapter
    maps it. ``updates`` carries extra row fields the adapter wants stored
    (``redirect_url``, ``merchant_prepare_id``, ``provider_create_time``).
    """
    provider: Provider
    native_status: Any
    booking_id: Optional[UUID] = None
    provider_transaction_id: Optional[str] = None
    payload: dict = field(default_factory=dict)
    settled_at: Optional[datetime] = None
    signature_valid: bool = True
    cancel_reason: Optional[int] = None
    amount: Optional[Money] = None
    updates: dict = field(default_factory=dict)


@dataclass
class ReconciliationResult:
    transaction: Transaction
    created: bool = False
    changed: bool = False
    booking_outcome: Optional[PaymentConfirmationOutcome] = None

    @property
    def state(self) -> CanonicalState:
        return self.transaction.state


class Reconciler:

    def __init__(
        self,
        transaction_repo: DjangoTransactionRepository | None = None,
        booking_repo: DjangoBookingRepository | None = None,
        clock: Clock | None = None,
        bus=None,
    ):
        self.transaction_repo = transaction_repo or DjangoTransactionRepository()
        self.booking_repo = booking_repo or DjangoBookingRepository()
        self.clock = clock or get_clock()
        if bus is None:
            from shared.application.message_bus import message_bus as bus
        self.bus = bus

    # --- inbound events ------------------------------------------------

    def apply(self, event: ReconciliationEvent) -> ReconciliationResult:
        """
        Apply one provider event. Repeating an event is a no-op.

        Raises ``NotFoundError`` when neither the provider id nor the booking
        identify a transaction or booking.
        """
        new_state = get_adapter(event.provider).map_status(event.native_status)
        now = self.clock.now()

        with DjangoUnitOfWork() as uow:
            txn, created = self._locate(event, now)

            if self._is_second_payment(txn, event, new_state):
                self._record_payload(txn, event)
                self._record_second_payment(txn, event, now)
                self._save(txn)
                uow.collect_events(txn)
                return ReconciliationResult(transaction=txn, created=created)

            if not self._accepts_attempt(txn, event, new_state, now):
                self._record_payload(txn, event)
                self._save(txn)
                uow.collect_events(txn)
                return ReconciliationResult(transaction=txn, created=created)

            self._record_payload(txn, event)
            for name, value in event.updates.items():
                if value is not None:
                    setattr(txn, name, value)
            if event.amount is not None and txn.state is CanonicalState.PENDING:
                txn.amount = event.amount

            changed = txn.move_to(new_state, event.settled_at or now, reason=event.cancel_reason)
            self._save(txn)
            uow.collect_events(txn)

            if changed:
                logger.info(
                    "Transaction %s (%s:%s) moved to %s",
                    txn.id, txn.provider.value, txn.provider_transaction_id, txn.state.name,
                )
            else:
                logger.debug(
                    "Transaction %s unchanged at %s (event status %r)",
                    txn.id, txn.state.name, event.native_status,
                )

            outcome = None
            if txn.state is CanonicalState.PAID:
                outcome = self._confirm_booking(txn, now)

        return ReconciliationResult(transaction=txn, created=created, changed=changed, booking_outcome=outcome)

    def _locate(self, event: ReconciliationEvent, now: datetime):
        txn = None
        if event.provider_transaction_id:
            txn = self.transaction_repo.get_by_provider_id(
                event.provider, event.provider_transaction_id, lock=True,
            )
        if txn is None and event.booking_id is not None:
            txn = self.transaction_repo.get_for_booking(event.provider, event.booking_id, lock=True)
        if txn is not None:
            return txn, False

        if event.booking_id is None:
            raise NotFoundError(
                f"No {event.provider.value} transaction {event.provider_transaction_id}"
            )

        booking = self.booking_repo.get(event.booking_id)
        txn = Transaction(
            provider=event.provider,
            booking_id=booking.id,
            user_id=booking.user_id,
            amount=event.amount or booking.final_total,
            provider_transaction_id=event.provider_transaction_id,
            created_at=now,
            updated_at=now,
        )
        txn.add_event(_opened(txn))
        logger.info(
            "First contact from %s for booking %s, transaction %s created",
            event.provider.value, booking.unique_request_id, txn.id,
        )
        return txn, True

    def _accepts_attempt(self, txn: Transaction, event: ReconciliationEvent,
                         new_state: CanonicalState, now: datetime) -> bool:
        """
        Bind the event's provider id to the row.

        An event for a superseded attempt is only applied when it reports
        money taken; anything else is logged and ignored.
        """
        pid = event.provider_transaction_id
        if not pid or txn.provider_transaction_id == pid:
            return True
        if txn.provider_transaction_id is None:
            txn.provider_transaction_id = pid
            return True

        if new_state is not CanonicalState.PAID:
            logger.info(
                "Ignoring %s event for superseded attempt %s on transaction %s (current %s)",
                txn.provider.value, pid, txn.id, txn.provider_transaction_id,
            )
            return False

        logger.warning(
            "PAID %s event for superseded attempt %s on transaction %s (current %s, %s)",
            txn.provider.value, pid, txn.id, txn.provider_transaction_id, txn.state.name,
        )
        if txn.state is CanonicalState.FAILED:
            txn.rearm(pid, event.amount or txn.amount, now)
        elif txn.state is CanonicalState.PENDING:
            txn.replace_attempt(pid, now)
        return True

    @staticmethod
    def _is_second_payment(txn: Transaction, event: ReconciliationEvent, new_state: CanonicalState) -> bool:
        pid = event.provider_transaction_id
        return (
            new_state is CanonicalState.PAID
            and txn.state is CanonicalState.PAID
            and bool(pid)
            and txn.provider_transaction_id not in (None, pid)
        )

    def _record_second_payment(self, txn: Transaction, event: ReconciliationEvent, now: datetime):
        """Keep the paid attempt as is; list the extra payment for a refund."""
        extra = list(txn.provider_data.get('extra_payments', []))
        if any(item['provider_transaction_id'] == event.provider_transaction_id for item in extra):
            return
        amount = event.amount or txn.amount
        extra.append({
            'provider_transaction_id': event.provider_transaction_id,
            'amount': str(amount.amount),
            'currency': amount.currency,
            'received_at': (event.settled_at or now).isoformat(),
        })
        txn.provider_data = {**txn.provider_data, 'extra_payments': extra}
        txn.touch(now)
        logger.error(
            "Double payment: %s attempt %s paid booking %s again (transaction %s already paid by %s)",
            txn.provider.value, event.provider_transaction_id, txn.booking_id, txn.id,
            txn.provider_transaction_id,
        )

    def _record_payload(self, txn: Transaction, event: ReconciliationEvent):
        if event.payload:
            txn.provider_data = {**txn.provider_data, 'last_event': event.payload}
        if not event.signature_valid:
            logger.warning(
                "Signature mismatch on %s event for transaction %s; processed and flagged",
                txn.provider.value, txn.id,
            )
            txn.signature_valid = False

    def _confirm_booking(self, txn: Transaction, now: datetime) -> PaymentConfirmationOutcome:
        snapshot = {
            'provider': txn.provider.value,
            'transaction_id': str(txn.id),
            'provider_transaction_id': txn.provider_transaction_id,
            'amount': str(txn.amount.amount),
            'currency': txn.amount.currency,
            'perform_date': txn.perform_date.isoformat() if txn.perform_date else None,
        }
        return self.bus.handle_command(ConfirmBookingPaymentCommand(
            booking_id=txn.booking_id,
            provider=txn.provider.value,
            paid_at=txn.perform_date or now,
            snapshot=snapshot,
        ))

    # --- outbound attempts ---------------------------------------------

    def open_attempt(
        self,
        provider: Provider,
        booking_id: UUID,
        *,
        provider_transaction_id: Optional[str] = None,
        amount: Optional[Money] = None,
        allow_concurrent: bool = True,
        payload: dict | None = None,
        **fields,
    ) -> Transaction:
        """
        Start a provider attempt for a booking awaiting payment.

        Creates the (provider, booking) row in PENDING, re-arms a FAILED
        row, or supersedes a pending attempt. Raises ``AlreadyPaid`` when
        any provider already holds a PAID transaction for the booking and
        ``DuplicatePendingTransaction`` when ``allow_concurrent`` is false
        and another attempt is still pending.
        """
        now = self.clock.now()

        with DjangoUnitOfWork() as uow:
            txn = self.transaction_repo.get_for_booking(provider, booking_id, lock=True)
            if self.transaction_repo.has_paid(booking_id):
                raise AlreadyPaid("Booking is already paid", current_status='paid')

            booking = self.booking_repo.get(booking_id)
            if not booking.awaiting_payment:
                raise StateError(
                    f"Booking {booking.unique_request_id} is not awaiting payment",
                    current_status=booking.status.value,
                )
            amount = amount or booking.final_total

            if txn is None:
                txn = Transaction(
                    provider=provider,
                    booking_id=booking.id,
                    user_id=booking.user_id,
                    amount=amount,
                    provider_transaction_id=provider_transaction_id,
                    created_at=now,
                    updated_at=now,
                )
                txn.add_event(_opened(txn))
            elif txn.state is CanonicalState.FAILED:
                txn.rearm(provider_transaction_id, amount, now)
                txn.add_event(_opened(txn))
            else:
                current = txn.provider_transaction_id
                if provider_transaction_id and current and current != provider_transaction_id:
                    if not allow_concurrent:
                        raise DuplicatePendingTransaction(
                            f"Transaction {current} is still pending for this booking",
                            current_status='pending',
                        )
                    txn.replace_attempt(provider_transaction_id, now)
                    txn.add_event(_opened(txn))
                elif provider_transaction_id:
                    txn.provider_transaction_id = provider_transaction_id
                txn.amount = amount
                txn.touch(now)

            for name, value in fields.items():
                setattr(txn, name, value)
            if payload:
                txn.provider_data = {**txn.provider_data, 'last_event': payload}

            try:
                with db_transaction.atomic():
                    self.transaction_repo.save(txn)
            except IntegrityError:
                raise DuplicatePendingTransaction(
                    "Another attempt for this booking was opened concurrently",
                    current_status='pending',
                )
            uow.collect_events(txn)

        logger.info(
            "Opened %s attempt %s for booking %s (transaction %s)",
            provider.value, provider_transaction_id or '-', booking.unique_request_id, txn.id,
        )
        return txn

    def _save(self, txn: Transaction):
        try:
            with db_transaction.atomic():
                self.transaction_repo.save(txn)
        except IntegrityError:
            raise DuplicatePendingTransaction(
                f"{txn.provider.value} transaction {txn.provider_transaction_id} is bound to another booking",
                current_status=txn.state.name.lower(),
            )


def _opened(txn: Transaction) -> TransactionOpened:
    return TransactionOpened(
        aggregate_id=txn.id,
        transaction_id=txn.id,
        provider=txn.provider.value,
        booking_id=txn.booking_id,
        provider_transaction_id=txn.provider_transaction_id,
        amount=str(txn.amount.amount),
    )
