"""
Payment endpoints

Provider callbacks are plain CSRF-exempt Django views: they never require
a session and always answer HTTP 200 in the provider's own vocabulary.
Client-facing endpoints are DRF views behind JWT authentication.
"""

import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.bookings.application.queries import visible_bookings
from apps.bookings.domain.entities import ActorRole
from apps.bookings.views import actor_for
from apps.payments.providers.click import ClickCallbackService, ClickError, refresh_click_payment
from apps.payments.providers.octo import handle_octo_notification, prepare_octo_payment
from apps.payments.providers.payme import PaymeError, PaymeMerchantService, rpc_error
from shared.domain.clock import get_clock
from shared.domain.exceptions import AuthorizationError, DomainError, NotFoundError

from .models import Transaction
from .serializers import OctoPrepareSerializer, TransactionSerializer

logger = logging.getLogger(__name__)


def _request_data(request) -> dict:
    if request.content_type == "application/json":
        try:
            data = json.loads(request.body or b"{}")
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}
    return request.POST.dict()


def _click_callback(request, step: str):
    data = _request_data(request)
    logger.info("Click %s callback for %s (click_trans_id=%s)",
                step, data.get("merchant_trans_id"), data.get("click_trans_id"))
    service = ClickCallbackService(clock=get_clock())
    try:
        result = getattr(service, step)(data)
    except Exception:
        logger.exception("Click %s callback failed", step)
        result = {"error": int(ClickError.BAD_REQUEST), "error_note": "Internal error"}
    return JsonResponse(result, json_dumps_params={"ensure_ascii": False})


@csrf_exempt
@require_POST
def click_prepare(request):
    """Click Shop API, action=0."""
    return _click_callback(request, "prepare")


@csrf_exempt
@require_POST
def click_complete(request):
    """Click Shop API, action=1."""
    return _click_callback(request, "complete")


@csrf_exempt
@require_POST
def payme_endpoint(request):
    """Payme Merchant API JSON-RPC endpoint."""
    try:
        payload = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Payme request with unparsable body")
        return JsonResponse(rpc_error(None, PaymeError("parse_error")))

    service = PaymeMerchantService(clock=get_clock())
    try:
        response = service.handle(payload, request.META.get("HTTP_AUTHORIZATION"))
    except Exception:
        logger.exception("Payme %s failed", payload.get("method") if isinstance(payload, dict) else None)
        request_id = payload.get("id") if isinstance(payload, dict) else None
        response = rpc_error(request_id, PaymeError("cant_perform"))
    return JsonResponse(response, json_dumps_params={"ensure_ascii": False})


@csrf_exempt
@require_POST
def octo_notify(request):
    """Octo notify_url callback. Always acknowledged."""
    data = _request_data(request)
    try:
        handle_octo_notification(data)
    except NotFoundError:
        logger.error("Octo notify for unknown payment %s", data.get("octo_payment_UUID"))
    except DomainError as exc:
        logger.error("Octo notify for %s refused: %s", data.get("octo_payment_UUID"), exc.message)
        return JsonResponse({"ok": False})
    except Exception:
        logger.exception("Octo notify for %s failed", data.get("octo_payment_UUID"))
        return JsonResponse({"ok": False})
    return JsonResponse({"ok": True})


class BookingTransactionsView(APIView):
    """Transactions recorded for one booking, across providers."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, booking_id):
        booking = _visible_booking(request.user, booking_id)
        transactions = Transaction.objects.filter(booking=booking).order_by("created_at")
        return Response(TransactionSerializer(transactions, many=True).data)


class BookingPaymentRefreshView(APIView):
    """Pull the Click status for a booking whose callback may have been missed."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, booking_id):
        booking = _visible_booking(request.user, booking_id)
        result = refresh_click_payment(booking.pk, clock=get_clock())
        booking.refresh_from_db()
        transactions = Transaction.objects.filter(booking=booking).order_by("created_at")
        return Response({
            "found": result is not None,
            "changed": bool(result and result.changed),
            "booking_status": booking.status,
            "transactions": TransactionSerializer(transactions, many=True).data,
        })


class OctoPrepareView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        actor = actor_for(request.user)
        if actor.role is not ActorRole.CLIENT:
            raise AuthorizationError("Only clients can pay for bookings")
        serializer = OctoPrepareSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = prepare_octo_payment(
            serializer.validated_data["booking"],
            request.user,
            serializer.validated_data["return_url"],
            language=serializer.validated_data["language"],
            clock=get_clock(),
        )
        return Response(result, status=status.HTTP_201_CREATED)


def _visible_booking(user, booking_id):
    booking = visible_bookings(actor_for(user)).filter(pk=booking_id).first()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking
