"""
Click (click.uz) integration

Two-phase Shop API callbacks (prepare, then complete), both signed with
md5 over a fixed field order, plus the Merchant API status lookup used to
pull a payment's status when a callback was missed.

``merchant_trans_id`` carries the booking's ``unique_request_id``; a
booking UUID is accepted too.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from enum import IntEnum
import hashlib
import hmac
import logging
import time

import requests
from django.conf import settings

from apps.bookings.repositories import DjangoBookingRepository
from apps.payments.application.reconciliation import ReconciliationEvent, Reconciler
from apps.payments.domain.entities import AlreadyPaid, CanonicalState, Provider
from apps.payments.providers.base import ProviderAdapter, register
from apps.payments.repositories import DjangoTransactionRepository
from shared.domain.clock import Clock, get_clock
from shared.domain.exceptions import NotFoundError, ProviderProtocolError, StateError, TransientIOError
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)

CLICK_MERCHANT_API_URL = "https://api.click.uz/v2/merchant"

PREPARE_FIELDS = (
    "click_trans_id", "service_id", "merchant_trans_id", "amount", "action", "sign_time", "sign_string",
)
COMPLETE_FIELDS = PREPARE_FIELDS + ("merchant_prepare_id", "error")


class ClickError(IntEnum):
    SUCCESS = 0
    SIGN_FAILED = -1
    INVALID_AMOUNT = -2
    ACTION_NOT_FOUND = -3
    ALREADY_PAID = -4
    BOOKING_NOT_FOUND = -5
    TRANSACTION_NOT_FOUND = -6
    BAD_REQUEST = -8
    TRANSACTION_CANCELLED = -9


class ClickAction(IntEnum):
    PREPARE = 0
    COMPLETE = 1


# Merchant API ``payment_status`` values; callbacks are mapped onto the same scale
CLICK_STATUS_CREATED = 0
CLICK_STATUS_PAID = 2


@register
class ClickAdapter(ProviderAdapter):
    """``payment_status``: negative is an error or cancellation, 2 is paid."""

    provider = Provider.CLICK

    def map_status(self, native_status) -> CanonicalState:
        try:
            value = int(native_status)
        except (TypeError, ValueError):
            return CanonicalState.FAILED
        if value < 0:
            return CanonicalState.FAILED
        if value >= CLICK_STATUS_PAID:
            return CanonicalState.PAID
        return CanonicalState.PENDING


def sign_string(data: dict, secret_key: str) -> str:
    """md5(click_trans_id + service_id + secret + merchant_trans_id + [merchant_prepare_id] + amount + action + sign_time)"""
    parts = [
        str(data.get("click_trans_id", "")),
        str(data.get("service_id", "")),
        secret_key,
        str(data.get("merchant_trans_id", "")),
    ]
    if str(data.get("action", "")).strip() == str(int(ClickAction.COMPLETE)):
        parts.append(str(data.get("merchant_prepare_id", "")))
    parts += [str(data.get("amount", "")), str(data.get("action", "")), str(data.get("sign_time", ""))]
    return hashlib.md5("".join(parts).encode("utf-8")).hexdigest()


def verify_signature(data: dict) -> bool:
    secret_key = getattr(settings, "CLICK_SECRET_KEY", "")
    if not secret_key:
        logger.error("CLICK_SECRET_KEY is not configured, rejecting Click callback")
        return False
    expected = sign_string(data, secret_key)
    return hmac.compare_digest(expected, str(data.get("sign_string", "")).lower())


def error_response(exc: ProviderProtocolError, data: dict) -> dict:
    response = {"error": int(exc.error_code), "error_note": exc.message}
    for key in ("click_trans_id", "merchant_trans_id"):
        if data.get(key) not in (None, ""):
            response[key] = data[key]
    return response


class ClickCallbackService:
    """Shop API prepare/complete handling. Every outcome is a response dict."""

    def __init__(self, reconciler: Reconciler | None = None, clock: Clock | None = None):
        self.clock = clock or get_clock()
        self.reconciler = reconciler or Reconciler(clock=self.clock)
        self.booking_repo = DjangoBookingRepository()
        self.transaction_repo = DjangoTransactionRepository()

    def prepare(self, data: dict) -> dict:
        try:
            return self._prepare(data)
        except ProviderProtocolError as exc:
            logger.warning("Click prepare refused (%s): %s", exc.error_code, exc.message)
            return error_response(exc, data)

    def complete(self, data: dict) -> dict:
        try:
            return self._complete(data)
        except ProviderProtocolError as exc:
            logger.warning("Click complete refused (%s): %s", exc.error_code, exc.message)
            return error_response(exc, data)

    def _validate(self, data: dict, fields, action: ClickAction):
        missing = [name for name in fields if data.get(name) in (None, "")]
        if missing:
            raise ProviderProtocolError(
                f"Missing required fields: {', '.join(missing)}", ClickError.BAD_REQUEST,
            )
        if str(data["service_id"]) != str(getattr(settings, "CLICK_SERVICE_ID", "")):
            raise ProviderProtocolError("Unknown service_id", ClickError.BAD_REQUEST)

        try:
            booking = self.booking_repo.get_by_reference(data["merchant_trans_id"])
        except NotFoundError:
            raise ProviderProtocolError("Booking not found", ClickError.BOOKING_NOT_FOUND)

        if not verify_signature(data):
            raise ProviderProtocolError("SIGN CHECK FAILED!", ClickError.SIGN_FAILED)

        try:
            requested_action = int(data["action"])
        except (TypeError, ValueError):
            raise ProviderProtocolError("Action not found", ClickError.ACTION_NOT_FOUND)
        if requested_action != action:
            raise ProviderProtocolError("Action not found", ClickError.ACTION_NOT_FOUND)

        try:
            amount = Money(Decimal(str(data["amount"])), booking.final_total.currency)
        except (InvalidOperation, ValueError):
            raise ProviderProtocolError("Incorrect parameter amount", ClickError.INVALID_AMOUNT)
        if not amount.matches(booking.final_total):
            raise ProviderProtocolError("Incorrect parameter amount", ClickError.INVALID_AMOUNT)

        if self.transaction_repo.has_paid(booking.id):
            raise ProviderProtocolError("Already paid", ClickError.ALREADY_PAID)
        return booking, amount

    def _prepare(self, data: dict) -> dict:
        booking, amount = self._validate(data, PREPARE_FIELDS, ClickAction.PREPARE)
        click_trans_id = str(data["click_trans_id"])

        existing = self.transaction_repo.get_by_provider_id(Provider.CLICK, click_trans_id)
        if existing is not None and existing.state is CanonicalState.FAILED:
            raise ProviderProtocolError("Transaction cancelled", ClickError.TRANSACTION_CANCELLED)
        if existing is not None and existing.merchant_prepare_id:
            # repeated prepare for the same attempt
            return self._prepare_response(data, existing.merchant_prepare_id)

        merchant_prepare_id = int(self.clock.now().timestamp() * 1000)
        try:
            txn = self.reconciler.open_attempt(
                Provider.CLICK,
                booking.id,
                provider_transaction_id=click_trans_id,
                amount=amount,
                payload=dict(data),
                merchant_prepare_id=merchant_prepare_id,
            )
        except AlreadyPaid:
            raise ProviderProtocolError("Already paid", ClickError.ALREADY_PAID)
        except StateError as exc:
            raise ProviderProtocolError(exc.message, ClickError.BOOKING_NOT_FOUND)

        logger.info("Click prepare accepted for booking %s (click_trans_id=%s)",
                    booking.unique_request_id, click_trans_id)
        return self._prepare_response(data, txn.merchant_prepare_id)

    def _prepare_response(self, data: dict, merchant_prepare_id: int) -> dict:
        return {
            "click_trans_id": data["click_trans_id"],
            "merchant_trans_id": data["merchant_trans_id"],
            "merchant_prepare_id": merchant_prepare_id,
            "error": int(ClickError.SUCCESS),
            "error_note": "Success",
        }

    def _complete(self, data: dict) -> dict:
        booking, amount = self._validate(data, COMPLETE_FIELDS, ClickAction.COMPLETE)
        click_trans_id = str(data["click_trans_id"])

        txn = self.transaction_repo.get_by_provider_id(Provider.CLICK, click_trans_id)
        try:
            prepare_id = int(data["merchant_prepare_id"])
        except (TypeError, ValueError):
            prepare_id = None
        if txn is None or txn.booking_id != booking.id or txn.merchant_prepare_id != prepare_id:
            raise ProviderProtocolError("Transaction not found", ClickError.TRANSACTION_NOT_FOUND)
        if txn.state is CanonicalState.FAILED:
            raise ProviderProtocolError("Transaction cancelled", ClickError.TRANSACTION_CANCELLED)

        try:
            click_error = int(data["error"])
        except (TypeError, ValueError):
            raise ProviderProtocolError("Incorrect parameter error", ClickError.BAD_REQUEST)

        if click_error < 0:
            self.reconciler.apply(ReconciliationEvent(
                provider=Provider.CLICK,
                native_status=click_error,
                booking_id=booking.id,
                provider_transaction_id=click_trans_id,
                payload=dict(data),
                cancel_reason=click_error,
            ))
            logger.info("Click cancelled transaction %s with error %s (%s)",
                        click_trans_id, click_error, data.get("error_note", ""))
            raise ProviderProtocolError("Transaction cancelled", ClickError.TRANSACTION_CANCELLED)

        result = self.reconciler.apply(ReconciliationEvent(
            provider=Provider.CLICK,
            native_status=CLICK_STATUS_PAID,
            booking_id=booking.id,
            provider_transaction_id=click_trans_id,
            payload=dict(data),
            amount=amount,
        ))
        perform_date = result.transaction.perform_date or self.clock.now()
        return {
            "click_trans_id": data["click_trans_id"],
            "merchant_trans_id": data["merchant_trans_id"],
            "merchant_confirm_id": int(perform_date.timestamp() * 1000),
            "error": int(ClickError.SUCCESS),
            "error_note": "Success",
        }


class ClickMerchantClient:
    """Merchant API client (``Auth: merchant_user_id:sha1(timestamp + secret):timestamp``)."""

    def __init__(self, service_id=None, merchant_user_id=None, secret_key=None, timeout=None):
        self.service_id = service_id or getattr(settings, "CLICK_SERVICE_ID", "")
        self.merchant_user_id = merchant_user_id or getattr(settings, "CLICK_MERCHANT_USER_ID", "")
        self.secret_key = secret_key or getattr(settings, "CLICK_SECRET_KEY", "")
        self.timeout = timeout or getattr(settings, "PAYMENT_HTTP_TIMEOUT", 15)
        self.base_url = getattr(settings, "CLICK_MERCHANT_API_URL", CLICK_MERCHANT_API_URL).rstrip("/")

    def auth_headers(self, timestamp: int | None = None) -> dict:
        timestamp = timestamp or int(time.time())
        digest = hashlib.sha1(f"{timestamp}{self.secret_key}".encode("utf-8")).hexdigest()
        return {
            "Auth": f"{self.merchant_user_id}:{digest}:{timestamp}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def payment_status(self, merchant_trans_id: str, payment_date: date) -> dict:
        url = (
            f"{self.base_url}/payment/status_by_mti/"
            f"{self.service_id}/{merchant_trans_id}/{payment_date.isoformat()}"
        )
        logger.info("Checking Click payment status for %s on %s", merchant_trans_id, payment_date)
        try:
            response = requests.get(url, headers=self.auth_headers(), timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Click Merchant API request failed for %s: %s", merchant_trans_id, e)
            raise TransientIOError(f"Click Merchant API unavailable: {e}")
        except ValueError:
            logger.error("Click Merchant API returned a non-JSON body for %s", merchant_trans_id)
            raise TransientIOError("Click Merchant API returned an invalid response")


def _payment_dates(clock: Clock, *moments) -> list:
    today = clock.today()
    dates = [today]
    for moment in moments:
        if moment is None:
            continue
        day = moment.astimezone(clock.tz).date()
        if day < today and day not in dates:
            dates.append(day)
    return dates


def refresh_click_payment(booking_id, client: ClickMerchantClient | None = None,
                          reconciler: Reconciler | None = None, clock: Clock | None = None):
    """
    Pull the Click status for a booking and feed it to reconciliation.

    Click looks payments up by merchant id and payment date, so today is
    asked first, then the local dates the Click attempt and the booking
    were created on. Returns the ``ReconciliationResult``, or None when
    Click knows no payment for the booking.
    """
    clock = clock or get_clock()
    client = client or ClickMerchantClient()
    reconciler = reconciler or Reconciler(clock=clock)
    booking = DjangoBookingRepository().get(booking_id)
    attempt = DjangoTransactionRepository().get_for_booking(Provider.CLICK, booking.id)

    data = {}
    for payment_date in _payment_dates(clock, attempt.created_at if attempt else None, booking.created_at):
        data = client.payment_status(booking.unique_request_id, payment_date)
        if data.get("error_code") == 0 and data.get("payment_status") is not None:
            break
    else:
        logger.info("Click has no payment for booking %s: %s (%s)",
                    booking.unique_request_id, data.get("error_code"), data.get("error_note"))
        return None

    payment_id = data.get("payment_id")
    return reconciler.apply(ReconciliationEvent(
        provider=Provider.CLICK,
        native_status=data["payment_status"],
        booking_id=booking.id,
        provider_transaction_id=str(payment_id) if payment_id is not None else None,
        payload=data,
    ))
