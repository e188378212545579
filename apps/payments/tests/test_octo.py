"""Octo prepare_payment and notify webhook."""

from __future__ import annotations

from unittest.mock import Mock, patch

import requests
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.models import Booking
from apps.bookings.tests.factories import make_user
from apps.payments.models import Transaction
from apps.payments.providers.octo import append_query, compute_signature, format_phone
from apps.users.models import User

from .base import PaymentFixturesMixin

PAYMENT_UUID = "8f5e2d4a-0c1b-4c51-9a6e-2f7d3b1c9e10"


def octo_reply(payload: dict) -> Mock:
    response = Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class OctoHelpersTests(TestCase):

    def test_signature_is_upper_sha1(self) -> None:
        signature = compute_signature(PAYMENT_UUID, "succeeded", secret="s3cret")

        self.assertEqual(len(signature), 40)
        self.assertEqual(signature, signature.upper())
        self.assertNotEqual(signature, compute_signature(PAYMENT_UUID, "canceled", secret="s3cret"))

    def test_format_phone(self) -> None:
        self.assertEqual(format_phone("90 123-45-67"), "998901234567")
        self.assertEqual(format_phone("+998901234567"), "998901234567")

    def test_append_query_keeps_existing_params(self) -> None:
        url = append_query("https://spacebook.test/pay?lang=ru", {"provider": "octo", "empty": ""})

        self.assertEqual(url, "https://spacebook.test/pay?lang=ru&provider=octo")


class OctoPrepareAPITests(PaymentFixturesMixin, APITestCase):

    def setUp(self) -> None:
        super().setUp()
        self.url = reverse("octo_prepare")
        self.client.force_authenticate(self.customer)

    def _payload(self) -> dict:
        return {"booking": str(self.booking.id), "return_url": "https://spacebook.test/paid", "language": "ru"}

    @patch("apps.payments.providers.octo.requests.post")
    def test_prepare_returns_pay_url(self, mock_post) -> None:
        mock_post.return_value = octo_reply({
            "error": 0,
            "data": {
                "octo_payment_UUID": PAYMENT_UUID,
                "octo_pay_url": f"https://pay.octo.uz/{PAYMENT_UUID}",
                "status": "created",
            },
        })

        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["url"], f"https://pay.octo.uz/{PAYMENT_UUID}")
        self.assertEqual(response.data["shop_transaction_id"], self.booking.unique_request_id)
        row = self.transaction_row("octo")
        self.assertEqual(str(row.id), response.data["transaction_id"])
        self.assertEqual(row.provider_transaction_id, PAYMENT_UUID)
        self.assertEqual(row.state, Transaction.State.PENDING)

        sent = mock_post.call_args[1]["json"]
        self.assertEqual(mock_post.call_args[0][0], "https://octo.test/prepare_payment")
        self.assertEqual(sent["octo_shop_id"], 42)
        self.assertEqual(sent["shop_transaction_id"], self.booking.unique_request_id)
        self.assertEqual(sent["total_sum"], 100000.0)
        self.assertEqual(sent["user_data"]["phone"], "998900000102")
        self.assertIn("provider=octo", sent["return_url"])
        self.assertIn("timeout", mock_post.call_args[1])

    @patch("apps.payments.providers.octo.requests.post")
    def test_prepare_timeout_keeps_attempt_pending(self, mock_post) -> None:
        mock_post.side_effect = requests.exceptions.Timeout("connect timed out")

        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data["error"], "provider_unavailable")
        row = self.transaction_row("octo")
        self.assertEqual(row.state, Transaction.State.PENDING)
        self.assertIsNone(row.provider_transaction_id)

    @patch("apps.payments.providers.octo.requests.post")
    def test_prepare_refused_by_octo(self, mock_post) -> None:
        mock_post.return_value = octo_reply({"error": 2, "errMessage": "Wrong secret"})

        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["provider_error_code"], 2)

    @patch("apps.payments.providers.octo.requests.post")
    def test_retry_after_timeout_reuses_the_row(self, mock_post) -> None:
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        self.client.post(self.url, self._payload(), format="json")

        mock_post.side_effect = None
        mock_post.return_value = octo_reply({
            "error": 0,
            "data": {"octo_payment_UUID": PAYMENT_UUID, "octo_pay_url": "https://pay.octo.uz/x", "status": "created"},
        })
        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(Transaction.objects.count(), 1)
        self.assertEqual(self.transaction_row("octo").provider_transaction_id, PAYMENT_UUID)

    def test_only_the_booking_client_can_pay(self) -> None:
        other = make_user("other@example.com", "+998900000555", User.RoleChoices.CLIENT)
        self.client.force_authenticate(other)

        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Transaction.objects.exists())

    def test_hosts_cannot_pay(self) -> None:
        self.client.force_authenticate(self.host)

        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    @override_settings(OCTO_SECRET="")
    def test_unconfigured_shop(self) -> None:
        response = self.client.post(self.url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class OctoNotifyTests(PaymentFixturesMixin, TestCase):

    def setUp(self) -> None:
        super().setUp()
        self.url = reverse("octo_notify")

    def notify(self, status_value: str, signature: str | None = None, **extra) -> dict:
        data = {
            "octo_payment_UUID": PAYMENT_UUID,
            "shop_transaction_id": self.booking.unique_request_id,
            "status": status_value,
            "signature": signature if signature is not None else compute_signature(PAYMENT_UUID, status_value),
            "total_sum": 100000,
        }
        data.update(extra)
        response = self.client.post(self.url, data, content_type="application/json")
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_succeeded_approves_booking(self) -> None:
        body = self.notify("succeeded", payed_time="2030-06-03 10:20:00")

        self.assertEqual(body, {"ok": True})
        row = self.transaction_row("octo")
        self.assertEqual(row.state, Transaction.State.PAID)
        self.assertTrue(row.signature_valid)
        self.assertEqual(row.perform_date.astimezone(self.clock.tz).strftime("%H:%M"), "10:20")
        self.assertEqual(self.booking_row().status, Booking.Status.APPROVED)

    def test_repeated_notification_is_idempotent(self) -> None:
        self.notify("succeeded")
        first = self.transaction_row("octo")

        body = self.notify("succeeded")

        self.assertEqual(body, {"ok": True})
        self.assertEqual(Transaction.objects.count(), 1)
        second = self.transaction_row("octo")
        self.assertEqual(second.state, Transaction.State.PAID)
        self.assertEqual(second.perform_date, first.perform_date)

    def test_bad_signature_is_flagged_but_processed(self) -> None:
        body = self.notify("succeeded", signature="FORGED")

        self.assertEqual(body, {"ok": True})
        row = self.transaction_row("octo")
        self.assertEqual(row.state, Transaction.State.PAID)
        self.assertFalse(row.signature_valid)

    def test_canceled_payment_fails_transaction(self) -> None:
        self.notify("canceled")

        self.assertEqual(self.transaction_row("octo").state, Transaction.State.FAILED)
        self.assertEqual(self.booking_row().status, Booking.Status.SELECTED)

    def test_waiting_status_keeps_pending(self) -> None:
        self.notify("wait_user_action")

        self.assertEqual(self.transaction_row("octo").state, Transaction.State.PENDING)

    def test_unknown_payment_is_acknowledged(self) -> None:
        body = self.notify("succeeded", shop_transaction_id="")

        self.assertEqual(body, {"ok": True})
        self.assertFalse(Transaction.objects.exists())

    def test_missing_status_is_refused(self) -> None:
        response = self.client.post(
            self.url, {"octo_payment_UUID": PAYMENT_UUID}, content_type="application/json"
        )

        self.assertEqual(response.json(), {"ok": False})
