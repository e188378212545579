"""Payment Domain Events"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class TransactionOpened(DomainEvent):
    """A provider attempt started (new row, or a failed row re-armed)."""
    transaction_id: UUID
    provider: str
    booking_id: UUID
    provider_transaction_id: Optional[str] = None
    amount: str = ''


@dataclass(kw_only=True)
class TransactionStateChanged(DomainEvent):
    transaction_id: UUID
    provider: str
    booking_id: UUID
    provider_transaction_id: Optional[str]
    old_state: int
    new_state: int
    cancel_reason: Optional[int] = None
