"""
Payment Domain Entities

- CanonicalState: provider-independent payment state
- Provider: the closed set of supported gateways
- Transaction: one row per (provider, booking), the unit of reconciliation
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional
from uuid import UUID

from shared.domain.base import Aggregate
from shared.domain.exceptions import StateError
from shared.domain.value_objects import Money


class CanonicalState(IntEnum):
    """
    Every provider's native vocabulary maps onto these three values.
    PAID and FAILED are terminal for a provider attempt.
    """
    FAILED = -1
    PENDING = 1
    PAID = 2

    @property
    def is_terminal(self) -> bool:
        return self is not CanonicalState.PENDING


class Provider(Enum):
    CLICK = 'click'
    PAYME = 'payme'
    OCTO = 'octo'


class AlreadyPaid(StateError):
    """The booking already has a PAID transaction."""

    code = 'already_paid'


class DuplicatePendingTransaction(StateError):
    """A second concurrent attempt while one is still pending."""

    code = 'duplicate_pending_transaction'


@dataclass(kw_only=True, eq=False)
class Transaction(Aggregate):
    """
    Transaction Aggregate Root

    Invariants:
    - state moves PENDING -> PAID or PENDING -> FAILED, never back
    - ``perform_date`` is stamped once, when the state first becomes PAID
    - a FAILED row can be re-armed for a new provider attempt; the old
      attempt is archived in ``provider_data["previous_attempts"]``
    """

    provider: Provider
    booking_id: UUID
    user_id: int
    amount: Money
    provider_transaction_id: Optional[str] = None
    state: CanonicalState = CanonicalState.PENDING
    provider_data: dict = field(default_factory=dict)
    perform_date: Optional[datetime] = None
    cancel_date: Optional[datetime] = None
    cancel_reason: Optional[int] = None
    merchant_prepare_id: Optional[int] = None
    provider_create_time: Optional[int] = None
    redirect_url: str = ''
    signature_valid: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def move_to(self, state: CanonicalState, at: datetime, *, reason: Optional[int] = None) -> bool:
        """
        Apply a new canonical state.

        Returns False, changing nothing, when the state is unchanged or the
        current state is already terminal.
        """
        from apps.payments.domain.events import TransactionStateChanged

        if state == self.state or self.is_terminal:
            return False

        previous = self.state
        self.state = state
        if state is CanonicalState.PAID and self.perform_date is None:
            self.perform_date = at
        elif state is CanonicalState.FAILED:
            self.cancel_date = at
            self.cancel_reason = reason
        self.touch(at)
        self.add_event(TransactionStateChanged(
            aggregate_id=self.id,
            transaction_id=self.id,
            provider=self.provider.value,
            booking_id=self.booking_id,
            provider_transaction_id=self.provider_transaction_id,
            old_state=int(previous),
            new_state=int(state),
            cancel_reason=reason,
        ))
        return True

    def archive_attempt(self):
        attempts = list(self.provider_data.get('previous_attempts', []))
        attempts.append({
            'provider_transaction_id': self.provider_transaction_id,
            'state': int(self.state),
            'perform_date': self.perform_date.isoformat() if self.perform_date else None,
            'cancel_date': self.cancel_date.isoformat() if self.cancel_date else None,
            'cancel_reason': self.cancel_reason,
            'provider_create_time': self.provider_create_time,
        })
        self.provider_data = {**self.provider_data, 'previous_attempts': attempts}

    def rearm(self, provider_transaction_id: Optional[str], amount: Money, at: datetime):
        """Start a new provider attempt on a FAILED row."""
        if self.state is not CanonicalState.FAILED:
            raise StateError(
                f"Only a failed transaction can be retried, this one is {self.state.name}",
                current_status=self.state.name.lower(),
            )
        self.archive_attempt()
        self.provider_transaction_id = provider_transaction_id
        self.amount = amount
        self.state = CanonicalState.PENDING
        self.cancel_date = None
        self.cancel_reason = None
        self.merchant_prepare_id = None
        self.provider_create_time = None
        self.redirect_url = ''
        self.signature_valid = True
        self.touch(at)

    def replace_attempt(self, provider_transaction_id: Optional[str], at: datetime):
        """Supersede a still-pending attempt by a new provider id."""
        self.archive_attempt()
        self.provider_transaction_id = provider_transaction_id
        self.provider_create_time = None
        self.touch(at)
