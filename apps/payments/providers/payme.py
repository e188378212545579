"""
Payme (paycom.uz) Merchant API

A single JSON-RPC endpoint. Payme authenticates with
``Authorization: Basic base64("Paycom:<key>")`` and drives the
transaction through CheckPerformTransaction, CreateTransaction,
PerformTransaction, CancelTransaction, CheckTransaction and GetStatement.

Amounts are in tiyin. Times are milliseconds since the epoch. Only one
non-final Payme transaction may exist per booking; a pending one older
than ``PAYME_TRANSACTION_TIMEOUT_MS`` is cancelled with reason 4.
"""

from datetime import datetime
from typing import Optional, Tuple
import base64
import binascii
import hmac
import logging

from django.conf import settings

from apps.bookings.domain.entities import BookingStatus
from apps.bookings.repositories import DjangoBookingRepository
from apps.payments.application.reconciliation import ReconciliationEvent, Reconciler
from apps.payments.domain.entities import (
    AlreadyPaid,
    CanonicalState,
    DuplicatePendingTransaction,
    Provider,
    Transaction,
)
from apps.payments.providers.base import ProviderAdapter, register
from apps.payments.repositories import DjangoTransactionRepository
from shared.domain.clock import Clock, get_clock
from shared.domain.exceptions import NotFoundError, ProviderProtocolError, StateError

logger = logging.getLogger(__name__)

PAYME_LOGIN = "Paycom"
ACCOUNT_FIELD = "booking_id"
DEFAULT_TRANSACTION_TIMEOUT_MS = 12 * 60 * 1000
REASON_TIMEOUT = 4

# Payme-native transaction states
STATE_CREATED = 1
STATE_PERFORMED = 2
STATE_CANCELLED = -1
STATE_CANCELLED_AFTER_PERFORM = -2

MESSAGES = {
    "invalid_amount": (-31001, {
        "uz": "Noto'g'ri summa",
        "ru": "Недопустимая сумма",
        "en": "Invalid amount",
    }),
    "booking_not_found": (-31050, {
        "uz": "Buyurtma topilmadi",
        "ru": "Бронирование не найдено",
        "en": "Booking not found",
    }),
    "not_payable": (-31050, {
        "uz": "Buyurtma to'lovni kutmayapti",
        "ru": "Бронирование не ожидает оплаты",
        "en": "Booking is not awaiting payment",
    }),
    "pending": (-31050, {
        "uz": "Buyurtma uchun to'lov kutilayapti",
        "ru": "Ожидается оплата бронирования",
        "en": "Payment for the booking is pending",
    }),
    "already_paid": (-31060, {
        "uz": "Buyurtma uchun to'lov qilingan",
        "ru": "Бронирование уже оплачено",
        "en": "Booking is already paid",
    }),
    "transaction_not_found": (-31003, {
        "uz": "Tranzaksiya topilmadi",
        "ru": "Транзакция не найдена",
        "en": "Transaction not found",
    }),
    "cant_perform": (-31008, {
        "uz": "Biz operatsiyani bajara olmaymiz",
        "ru": "Невозможно выполнить операцию",
        "en": "Unable to perform operation",
    }),
    "cant_cancel": (-31007, {
        "uz": "Tranzaksiyani bekor qilib bo'lmaydi",
        "ru": "Невозможно отменить транзакцию",
        "en": "Unable to cancel transaction",
    }),
    "insufficient_privilege": (-32504, {
        "uz": "Avtorizatsiya yaroqsiz",
        "ru": "Недостаточно привилегий для выполнения метода",
        "en": "Insufficient privilege to perform this method",
    }),
    "parse_error": (-32700, {
        "uz": "JSON tahlil xatosi",
        "ru": "Ошибка разбора JSON",
        "en": "Parse error",
    }),
    "invalid_request": (-32600, {
        "uz": "Noto'g'ri so'rov",
        "ru": "Неверный запрос",
        "en": "Invalid request",
    }),
    "method_not_found": (-32601, {
        "uz": "Metod topilmadi",
        "ru": "Метод не найден",
        "en": "Method not found",
    }),
}


class PaymeError(ProviderProtocolError):
    """A JSON-RPC error with its localized message."""

    def __init__(self, name: str, data: Optional[str] = None):
        code, messages = MESSAGES[name]
        super().__init__(messages["en"], code, data)
        self.name = name
        self.messages = messages

    def to_rpc(self) -> dict:
        error = {"code": self.error_code, "message": self.messages}
        if self.data:
            error["data"] = self.data
        return error


@register
class PaymeAdapter(ProviderAdapter):
    provider = Provider.PAYME

    def map_status(self, native_status) -> CanonicalState:
        value = int(native_status)
        if value == STATE_PERFORMED:
            return CanonicalState.PAID
        if value == STATE_CREATED:
            return CanonicalState.PENDING
        return CanonicalState.FAILED


def to_ms(value: Optional[datetime]) -> int:
    return int(value.timestamp() * 1000) if value else 0


def native_state(txn: Transaction) -> int:
    if txn.state is CanonicalState.PAID:
        return STATE_PERFORMED
    if txn.state is CanonicalState.PENDING:
        return STATE_CREATED
    return STATE_CANCELLED_AFTER_PERFORM if txn.perform_date else STATE_CANCELLED


def iso_to_ms(value: Optional[str]) -> int:
    return to_ms(datetime.fromisoformat(value)) if value else 0


def archived_state(attempt: dict) -> int:
    """Payme state of a replaced attempt; it never stays open."""
    if attempt.get("state") == int(CanonicalState.PAID):
        return STATE_PERFORMED
    return STATE_CANCELLED_AFTER_PERFORM if attempt.get("perform_date") else STATE_CANCELLED


def check_authorization(header: Optional[str]) -> bool:
    key = getattr(settings, "PAYME_KEY", "")
    if not key or not header or not header.startswith("Basic "):
        return False
    try:
        decoded = base64.b64decode(header[len("Basic "):].strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    login, _, password = decoded.partition(":")
    return login == PAYME_LOGIN and hmac.compare_digest(password, key)


def rpc_error(request_id, error: PaymeError) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_rpc()}


class PaymeMerchantService:
    """
    Dispatches one JSON-RPC request.

    ``handle`` never raises for protocol problems; it returns the response
    body, error or result, that the view sends with HTTP 200.
    """

    METHODS = {
        "CheckPerformTransaction": "check_perform_transaction",
        "CreateTransaction": "create_transaction",
        "PerformTransaction": "perform_transaction",
        "CancelTransaction": "cancel_transaction",
        "CheckTransaction": "check_transaction",
        "GetStatement": "get_statement",
    }

    def __init__(self, reconciler: Reconciler | None = None, clock: Clock | None = None):
        self.clock = clock or get_clock()
        self.reconciler = reconciler or Reconciler(clock=self.clock)
        self.booking_repo = DjangoBookingRepository()
        self.transaction_repo = DjangoTransactionRepository()
        self.timeout_ms = getattr(settings, "PAYME_TRANSACTION_TIMEOUT_MS", DEFAULT_TRANSACTION_TIMEOUT_MS)

    def handle(self, payload, authorization: Optional[str]) -> dict:
        request_id = payload.get("id") if isinstance(payload, dict) else None
        if not check_authorization(authorization):
            logger.warning("Payme request %s rejected: bad authorization", request_id)
            return rpc_error(request_id, PaymeError("insufficient_privilege"))

        if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
            return rpc_error(request_id, PaymeError("invalid_request"))
        handler_name = self.METHODS.get(payload["method"])
        if handler_name is None:
            return rpc_error(request_id, PaymeError("method_not_found", payload["method"]))
        params = payload.get("params")
        if not isinstance(params, dict):
            return rpc_error(request_id, PaymeError("invalid_request"))

        try:
            result = getattr(self, handler_name)(params)
        except PaymeError as exc:
            logger.info("Payme %s refused with %s (%s)", payload["method"], exc.error_code, exc.name)
            return rpc_error(request_id, exc)
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    # --- helpers -------------------------------------------------------

    def _now_ms(self) -> int:
        return to_ms(self.clock.now())

    def _booking(self, params: dict):
        account = params.get("account") or {}
        reference = account.get(ACCOUNT_FIELD)
        if reference in (None, ""):
            raise PaymeError("booking_not_found", ACCOUNT_FIELD)
        try:
            return self.booking_repo.get_by_reference(str(reference))
        except NotFoundError:
            raise PaymeError("booking_not_found", ACCOUNT_FIELD)

    def _check_amount(self, booking, params: dict) -> int:
        try:
            amount = int(params.get("amount"))
        except (TypeError, ValueError):
            raise PaymeError("invalid_amount")
        if amount != booking.final_total.to_minor_units():
            raise PaymeError("invalid_amount")
        return amount

    def _transaction(self, params: dict) -> Tuple[Transaction, Optional[dict]]:
        """
        The row for a Payme id and, when the id belongs to a replaced
        attempt, that archived attempt.
        """
        payme_id = str(params.get("id", ""))
        txn = self.transaction_repo.get_by_provider_id(Provider.PAYME, payme_id)
        if txn is not None:
            return txn, None
        found = self.transaction_repo.find_archived_attempt(Provider.PAYME, payme_id) if payme_id else None
        if found is None:
            raise PaymeError("transaction_not_found")
        return found

    def _is_expired(self, txn: Transaction) -> bool:
        created = txn.provider_create_time or to_ms(txn.created_at)
        return self._now_ms() - created > self.timeout_ms

    def _cancel(self, txn: Transaction, reason: int) -> Transaction:
        result = self.reconciler.apply(ReconciliationEvent(
            provider=Provider.PAYME,
            native_status=STATE_CANCELLED,
            booking_id=txn.booking_id,
            provider_transaction_id=txn.provider_transaction_id,
            cancel_reason=reason,
        ))
        return result.transaction

    def _ensure_no_other_pending(self, booking, payme_id: Optional[str]):
        current = self.transaction_repo.get_for_booking(Provider.PAYME, booking.id)
        if current is None or current.state is not CanonicalState.PENDING:
            return
        if current.provider_transaction_id in (None, payme_id):
            return
        if self._is_expired(current):
            logger.info("Cancelling expired Payme transaction %s for booking %s",
                        current.provider_transaction_id, booking.unique_request_id)
            self._cancel(current, REASON_TIMEOUT)
            return
        raise PaymeError("pending", ACCOUNT_FIELD)

    def _check_perform(self, params: dict, payme_id: Optional[str] = None):
        booking = self._booking(params)
        self._check_amount(booking, params)
        if self.transaction_repo.has_paid(booking.id):
            raise PaymeError("already_paid", ACCOUNT_FIELD)
        if not booking.awaiting_payment:
            raise PaymeError("not_payable", ACCOUNT_FIELD)
        self._ensure_no_other_pending(booking, payme_id)
        return booking

    def _describe(self, txn: Transaction) -> dict:
        return {
            "create_time": txn.provider_create_time or to_ms(txn.created_at),
            "perform_time": to_ms(txn.perform_date),
            "cancel_time": to_ms(txn.cancel_date),
            "transaction": str(txn.id),
            "state": native_state(txn),
            "reason": txn.cancel_reason,
        }

    def _describe_archived(self, txn: Transaction, attempt: dict) -> dict:
        return {
            "create_time": attempt.get("provider_create_time") or 0,
            "perform_time": iso_to_ms(attempt.get("perform_date")),
            "cancel_time": iso_to_ms(attempt.get("cancel_date")),
            "transaction": str(txn.id),
            "state": archived_state(attempt),
            "reason": attempt.get("cancel_reason"),
        }

    # --- methods -------------------------------------------------------

    def check_perform_transaction(self, params: dict) -> dict:
        self._check_perform(params)
        return {"allow": True}

    def create_transaction(self, params: dict) -> dict:
        payme_id = str(params.get("id", ""))
        if not payme_id:
            raise PaymeError("invalid_request")

        existing = self.transaction_repo.get_by_provider_id(Provider.PAYME, payme_id)
        if existing is not None:
            if existing.state is not CanonicalState.PENDING:
                raise PaymeError("cant_perform")
            if self._is_expired(existing):
                self._cancel(existing, REASON_TIMEOUT)
                raise PaymeError("cant_perform")
            return {
                "create_time": existing.provider_create_time,
                "transaction": str(existing.id),
                "state": STATE_CREATED,
            }
        if self.transaction_repo.find_archived_attempt(Provider.PAYME, payme_id) is not None:
            raise PaymeError("cant_perform")

        booking = self._check_perform(params, payme_id)
        try:
            create_time = int(params.get("time"))
        except (TypeError, ValueError):
            create_time = self._now_ms()

        try:
            txn = self.reconciler.open_attempt(
                Provider.PAYME,
                booking.id,
                provider_transaction_id=payme_id,
                allow_concurrent=False,
                payload=params,
                provider_create_time=create_time,
            )
        except AlreadyPaid:
            raise PaymeError("already_paid", ACCOUNT_FIELD)
        except DuplicatePendingTransaction:
            raise PaymeError("pending", ACCOUNT_FIELD)
        except StateError:
            raise PaymeError("not_payable", ACCOUNT_FIELD)

        logger.info("Payme transaction %s created for booking %s", payme_id, booking.unique_request_id)
        return {"create_time": txn.provider_create_time, "transaction": str(txn.id), "state": STATE_CREATED}

    def perform_transaction(self, params: dict) -> dict:
        txn, archived = self._transaction(params)
        if archived is not None:
            raise PaymeError("cant_perform")
        if txn.state is CanonicalState.PAID:
            return {"transaction": str(txn.id), "perform_time": to_ms(txn.perform_date), "state": STATE_PERFORMED}
        if txn.state is CanonicalState.FAILED:
            raise PaymeError("cant_perform")
        if self._is_expired(txn):
            self._cancel(txn, REASON_TIMEOUT)
            raise PaymeError("cant_perform")

        booking = self.booking_repo.get(txn.booking_id)
        if booking.status in (BookingStatus.REJECTED, BookingStatus.CANCELLED):
            logger.warning("Refusing to perform Payme transaction %s: booking %s is %s",
                           txn.provider_transaction_id, booking.unique_request_id, booking.status.value)
            raise PaymeError("cant_perform")

        result = self.reconciler.apply(ReconciliationEvent(
            provider=Provider.PAYME,
            native_status=STATE_PERFORMED,
            booking_id=txn.booking_id,
            provider_transaction_id=txn.provider_transaction_id,
            payload=params,
        ))
        txn = result.transaction
        return {"transaction": str(txn.id), "perform_time": to_ms(txn.perform_date), "state": native_state(txn)}

    def cancel_transaction(self, params: dict) -> dict:
        txn, archived = self._transaction(params)
        if archived is not None:
            if archived_state(archived) == STATE_PERFORMED:
                raise PaymeError("cant_cancel")
            described = self._describe_archived(txn, archived)
            return {"transaction": described["transaction"], "cancel_time": described["cancel_time"],
                    "state": described["state"]}
        if txn.state is CanonicalState.PAID:
            raise PaymeError("cant_cancel")
        if txn.state is CanonicalState.PENDING:
            try:
                reason = int(params.get("reason"))
            except (TypeError, ValueError):
                reason = None
            txn = self._cancel(txn, reason)
            logger.info("Payme transaction %s cancelled, reason %s", txn.provider_transaction_id, reason)
        return {"transaction": str(txn.id), "cancel_time": to_ms(txn.cancel_date), "state": native_state(txn)}

    def check_transaction(self, params: dict) -> dict:
        txn, archived = self._transaction(params)
        if archived is not None:
            return self._describe_archived(txn, archived)
        return self._describe(txn)

    def get_statement(self, params: dict) -> dict:
        try:
            start, end = int(params.get("from")), int(params.get("to"))
        except (TypeError, ValueError):
            raise PaymeError("invalid_request")

        transactions = []
        for txn in self.transaction_repo.created_between(Provider.PAYME, start, end):
            booking = self.booking_repo.get(txn.booking_id)
            entry = self._describe(txn)
            entry.update({
                "id": txn.provider_transaction_id,
                "time": txn.provider_create_time,
                "amount": txn.amount.to_minor_units(),
                "account": {ACCOUNT_FIELD: booking.unique_request_id},
            })
            transactions.append(entry)
        for txn in self.transaction_repo.with_archived_attempts(Provider.PAYME):
            for attempt in txn.provider_data.get("previous_attempts", []):
                created = attempt.get("provider_create_time")
                if created is None or not start <= created <= end:
                    continue
                booking = self.booking_repo.get(txn.booking_id)
                entry = self._describe_archived(txn, attempt)
                entry.update({
                    "id": attempt.get("provider_transaction_id"),
                    "time": created,
                    "amount": txn.amount.to_minor_units(),
                    "account": {ACCOUNT_FIELD: booking.unique_request_id},
                })
                transactions.append(entry)
        transactions.sort(key=lambda entry: entry["time"] or 0)
        return {"transactions": transactions}
