"""
Octo (octo.uz) integration

``prepare_octo_payment`` opens a PENDING attempt, calls
``/prepare_payment`` outside any database lock and stores the returned
``octo_payment_UUID`` and pay URL. The authoritative status arrives later
on the notify webhook, signed with SHA1(secret + uuid + status).
"""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import hashlib
import hmac
import logging
import re

import requests
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.bookings.repositories import DjangoBookingRepository
from apps.payments.application.reconciliation import ReconciliationEvent, Reconciler
from apps.payments.domain.entities import CanonicalState, Provider
from apps.payments.providers.base import ProviderAdapter, register
from shared.domain.clock import Clock, get_clock
from shared.domain.exceptions import AuthorizationError, NotFoundError, ProviderProtocolError, TransientIOError

logger = logging.getLogger(__name__)

OCTO_API_URL = "https://secure.octo.uz"

PENDING_STATUSES = {"created", "processing", "wait_user_action"}


@register
class OctoAdapter(ProviderAdapter):
    provider = Provider.OCTO

    def map_status(self, native_status) -> CanonicalState:
        status = str(native_status or "").strip().lower()
        if status == "succeeded":
            return CanonicalState.PAID
        if status in PENDING_STATUSES:
            return CanonicalState.PENDING
        return CanonicalState.FAILED


def compute_signature(payment_uuid: str, status: str, secret: str | None = None) -> str:
    secret = secret if secret is not None else getattr(settings, "OCTO_SECRET", "")
    return hashlib.sha1(f"{secret}{payment_uuid}{status}".encode("utf-8")).hexdigest().upper()


def verify_signature(payment_uuid: str, status: str, signature: str | None) -> bool:
    if not getattr(settings, "OCTO_SECRET", "") or not signature:
        return False
    return hmac.compare_digest(compute_signature(payment_uuid, status), str(signature).upper())


def format_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 9:
        return f"998{digits}"
    return digits


def append_query(url: str, params: dict) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query))
    query.update({k: str(v) for k, v in params.items() if v not in (None, "")})
    return urlunsplit(parts._replace(query=urlencode(query)))


class OctoClient:
    """Thin ``requests`` wrapper around Octo's ``prepare_payment``."""

    def __init__(self, shop_id=None, secret=None, api_url=None, timeout=None, test_mode=None):
        self.shop_id = shop_id or getattr(settings, "OCTO_SHOP_ID", 0)
        self.secret = secret or getattr(settings, "OCTO_SECRET", "")
        self.api_url = (api_url or getattr(settings, "OCTO_API_URL", OCTO_API_URL)).rstrip("/")
        self.timeout = timeout or getattr(settings, "PAYMENT_HTTP_TIMEOUT", 15)
        self.test_mode = getattr(settings, "OCTO_TEST_MODE", True) if test_mode is None else test_mode

    def prepare_payment(self, payload: dict) -> dict:
        if not self.shop_id or not self.secret:
            raise ProviderProtocolError("Octo shop id or secret is not configured", error_code=-1)

        body = {"octo_shop_id": int(self.shop_id), "octo_secret": self.secret, "test": bool(self.test_mode)}
        body.update(payload)
        try:
            response = requests.post(
                f"{self.api_url}/prepare_payment",
                json=body,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Octo prepare_payment failed for %s: %s", payload.get("shop_transaction_id"), e)
            raise TransientIOError(f"Octo is unavailable: {e}")
        except ValueError:
            raise TransientIOError("Octo returned an invalid response")

        if result.get("error") != 0:
            message = result.get("errMessage") or result.get("errorMessage") or "Octo error"
            logger.error("Octo prepare_payment refused %s: %s", payload.get("shop_transaction_id"), message)
            raise ProviderProtocolError(message, error_code=result.get("error") or -1, data=result)
        return result.get("data") or {}


def prepare_octo_payment(booking_id, user, return_url: str, language: str = "uz",
                         client: OctoClient | None = None, reconciler: Reconciler | None = None,
                         clock: Clock | None = None) -> dict:
    """
    Start an Octo checkout for a client's booking awaiting payment.

    Returns ``{"url", "octo_payment_uuid", "shop_transaction_id", "transaction_id"}``.
    A network failure raises ``TransientIOError`` and leaves the attempt PENDING.
    """
    clock = clock or get_clock()
    client = client or OctoClient()
    reconciler = reconciler or Reconciler(clock=clock)
    booking = DjangoBookingRepository().get(booking_id)

    if booking.user_id != user.pk:
        raise AuthorizationError("Only the client who made the booking can pay for it")

    reconciler.open_attempt(Provider.OCTO, booking.id)

    payload = {
        "shop_transaction_id": booking.unique_request_id,
        "auto_capture": True,
        "init_time": clock.now().strftime("%Y-%m-%d %H:%M:%S"),
        "user_data": {
            "user_id": str(booking.user_id),
            "phone": format_phone(getattr(user, "phone", "") or booking.guest_phone),
            "email": getattr(user, "email", "") or None,
        },
        "total_sum": float(booking.final_total.amount),
        "currency": booking.final_total.currency,
        "description": f"Booking {booking.unique_request_id}",
        "payment_methods": [{"method": "bank_card"}, {"method": "uzcard"}, {"method": "humo"}],
        "return_url": append_query(return_url, {
            "provider": Provider.OCTO.value,
            "booking_id": str(booking.id),
            "shop_transaction_id": booking.unique_request_id,
        }),
        "notify_url": getattr(settings, "OCTO_NOTIFY_URL", ""),
        "language": language,
        "ttl": 15,
    }

    # network call happens outside any transaction
    data = client.prepare_payment(payload)
    payment_uuid = data.get("octo_payment_UUID")
    txn = reconciler.open_attempt(
        Provider.OCTO,
        booking.id,
        provider_transaction_id=payment_uuid,
        payload=data,
        redirect_url=data.get("octo_pay_url") or "",
    )

    status = data.get("status") or "created"
    if OctoAdapter().map_status(status) is not CanonicalState.PENDING:
        txn = reconciler.apply(ReconciliationEvent(
            provider=Provider.OCTO,
            native_status=status,
            booking_id=booking.id,
            provider_transaction_id=payment_uuid,
            payload=data,
        )).transaction

    logger.info("Octo payment %s prepared for booking %s", payment_uuid, booking.unique_request_id)
    return {
        "url": txn.redirect_url,
        "octo_payment_uuid": payment_uuid,
        "shop_transaction_id": booking.unique_request_id,
        "transaction_id": str(txn.id),
    }


def handle_octo_notification(data: dict, reconciler: Reconciler | None = None):
    """
    Apply one notify callback. A bad signature is logged and flagged but
    the event is still processed.
    """
    payment_uuid = data.get("octo_payment_UUID")
    status = data.get("status")
    if not payment_uuid or not status:
        raise ProviderProtocolError("octo_payment_UUID and status are required", error_code=-1)

    signature_valid = verify_signature(payment_uuid, status, data.get("signature"))
    reconciler = reconciler or Reconciler()

    booking_id = None
    reference = data.get("shop_transaction_id")
    if reference:
        try:
            booking_id = DjangoBookingRepository().get_by_reference(str(reference)).id
        except NotFoundError:
            logger.info("Octo notify for %s names unknown booking %s", payment_uuid, reference)

    return reconciler.apply(ReconciliationEvent(
        provider=Provider.OCTO,
        native_status=status,
        booking_id=booking_id,
        provider_transaction_id=payment_uuid,
        payload=data,
        signature_valid=signature_valid,
        settled_at=parse_payed_time(data.get("payed_time"), reconciler.clock),
    ))


def parse_payed_time(value, clock: Clock):
    if not value:
        return None
    try:
        parsed = parse_datetime(str(value))
    except ValueError:
        return None
    if parsed is not None and timezone.is_naive(parsed):
        parsed = parsed.replace(tzinfo=clock.tz)
    return parsed
