"""
Transaction repository

Maps ``apps.payments.models.Transaction`` rows to the domain aggregate.
``lock=True`` issues ``SELECT ... FOR UPDATE``; use it inside a unit of work.
"""

from typing import List, Optional, Tuple
from uuid import UUID

from apps.payments.domain.entities import CanonicalState, Provider, Transaction
from apps.payments.models import Transaction as TransactionModel
from shared.domain.value_objects import Money


class DjangoTransactionRepository:

    def _queryset(self, lock: bool = False):
        queryset = TransactionModel.objects.all()
        return queryset.select_for_update() if lock else queryset

    def get(self, transaction_id: UUID, lock: bool = False) -> Optional[Transaction]:
        model = self._queryset(lock).filter(pk=transaction_id).first()
        return self._to_domain(model) if model else None

    def get_by_provider_id(self, provider: Provider, provider_transaction_id: str,
                           lock: bool = False) -> Optional[Transaction]:
        model = self._queryset(lock).filter(
            provider=provider.value,
            provider_transaction_id=str(provider_transaction_id),
        ).first()
        return self._to_domain(model) if model else None

    def get_for_booking(self, provider: Provider, booking_id: UUID, lock: bool = False) -> Optional[Transaction]:
        model = self._queryset(lock).filter(provider=provider.value, booking_id=booking_id).first()
        return self._to_domain(model) if model else None

    def with_archived_attempts(self, provider: Provider) -> List[Transaction]:
        models = TransactionModel.objects.filter(
            provider=provider.value,
            provider_data__has_key='previous_attempts',
        ).order_by('created_at')
        return [self._to_domain(model) for model in models]

    def find_archived_attempt(self, provider: Provider,
                              provider_transaction_id: str) -> Optional[Tuple[Transaction, dict]]:
        """The row that once carried ``provider_transaction_id`` and the archived attempt."""
        for transaction in self.with_archived_attempts(provider):
            for attempt in transaction.provider_data.get('previous_attempts', []):
                if attempt.get('provider_transaction_id') == str(provider_transaction_id):
                    return transaction, attempt
        return None

    def for_booking(self, booking_id: UUID) -> List[Transaction]:
        models = TransactionModel.objects.filter(booking_id=booking_id).order_by('created_at')
        return [self._to_domain(model) for model in models]

    def has_paid(self, booking_id: UUID) -> bool:
        return TransactionModel.objects.filter(booking_id=booking_id, state=CanonicalState.PAID).exists()

    def created_between(self, provider: Provider, start_ms: int, end_ms: int) -> List[Transaction]:
        models = TransactionModel.objects.filter(
            provider=provider.value,
            provider_create_time__gte=start_ms,
            provider_create_time__lte=end_ms,
        ).order_by('provider_create_time')
        return [self._to_domain(model) for model in models]

    def save(self, transaction: Transaction) -> None:
        model, _ = TransactionModel.objects.update_or_create(
            id=transaction.id,
            defaults={
                'provider': transaction.provider.value,
                'provider_transaction_id': transaction.provider_transaction_id,
                'state': int(transaction.state),
                'booking_id': transaction.booking_id,
                'user_id': transaction.user_id,
                'amount': transaction.amount.amount,
                'currency': transaction.amount.currency,
                'provider_data': transaction.provider_data,
                'perform_date': transaction.perform_date,
                'cancel_date': transaction.cancel_date,
                'cancel_reason': transaction.cancel_reason,
                'merchant_prepare_id': transaction.merchant_prepare_id,
                'provider_create_time': transaction.provider_create_time,
                'redirect_url': transaction.redirect_url,
                'signature_valid': transaction.signature_valid,
            },
        )
        transaction.created_at = model.created_at
        transaction.updated_at = model.updated_at

    def _to_domain(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            created_at=model.created_at,
            updated_at=model.updated_at,
            provider=Provider(model.provider),
            booking_id=model.booking_id,
            user_id=model.user_id,
            amount=Money(model.amount, model.currency or 'UZS'),
            provider_transaction_id=model.provider_transaction_id,
            state=CanonicalState(model.state),
            provider_data=model.provider_data or {},
            perform_date=model.perform_date,
            cancel_date=model.cancel_date,
            cancel_reason=model.cancel_reason,
            merchant_prepare_id=model.merchant_prepare_id,
            provider_create_time=model.provider_create_time,
            redirect_url=model.redirect_url,
            signature_valid=model.signature_valid,
        )
