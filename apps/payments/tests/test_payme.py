"""Payme Merchant API (JSON-RPC) endpoint."""

from __future__ import annotations

import base64
import json

from django.test import TestCase, override_settings
from django.urls import reverse

from apps.bookings.models import Booking
from apps.payments.models import Transaction

from .base import PaymentFixturesMixin

AMOUNT_TIYIN = 10_000_000
TWELVE_MINUTES_MS = 12 * 60 * 1000


def basic_auth(login: str = "Paycom", key: str = "payme-test-key") -> str:
    token = base64.b64encode(f"{login}:{key}".encode()).decode()
    return f"Basic {token}"


class PaymeEndpointTests(PaymentFixturesMixin, TestCase):

    def setUp(self) -> None:
        super().setUp()
        self.url = reverse("payme_endpoint")
        self._request_id = 0

    def rpc(self, method: str, params: dict, authorization: str | None = None) -> dict:
        self._request_id += 1
        response = self.client.post(
            self.url,
            data=json.dumps({"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}),
            content_type="application/json",
            HTTP_AUTHORIZATION=authorization or basic_auth(),
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["id"], self._request_id)
        return body

    def account(self, amount: int = AMOUNT_TIYIN) -> dict:
        return {"amount": amount, "account": {"booking_id": self.booking.unique_request_id}}

    def create(self, payme_id: str = "pm-1", time_ms: int | None = None) -> dict:
        params = {"id": payme_id, "time": time_ms or self.now_ms(), **self.account()}
        return self.rpc("CreateTransaction", params)

    def test_wrong_credentials(self) -> None:
        body = self.rpc("CheckPerformTransaction", self.account(), authorization=basic_auth(key="wrong"))

        self.assertEqual(body["error"]["code"], -32504)
        self.assertIn("ru", body["error"]["message"])

    def test_missing_credentials(self) -> None:
        response = self.client.post(
            self.url,
            data=json.dumps({"id": 1, "method": "CheckPerformTransaction", "params": self.account()}),
            content_type="application/json",
        )

        self.assertEqual(response.json()["error"]["code"], -32504)

    def test_unparsable_body(self) -> None:
        response = self.client.post(
            self.url, data="{not json", content_type="application/json", HTTP_AUTHORIZATION=basic_auth()
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["error"]["code"], -32700)

    def test_unknown_method(self) -> None:
        self.assertEqual(self.rpc("ChangePassword", {})["error"]["code"], -32601)

    def test_check_perform(self) -> None:
        self.assertEqual(self.rpc("CheckPerformTransaction", self.account())["result"], {"allow": True})

    def test_check_perform_wrong_amount(self) -> None:
        body = self.rpc("CheckPerformTransaction", self.account(amount=100))

        self.assertEqual(body["error"]["code"], -31001)

    def test_check_perform_unknown_booking(self) -> None:
        body = self.rpc("CheckPerformTransaction", {"amount": AMOUNT_TIYIN, "account": {"booking_id": "REQ-NOPE"}})

        self.assertEqual(body["error"]["code"], -31050)
        self.assertEqual(body["error"]["data"], "booking_id")

    def test_create_transaction(self) -> None:
        create_time = self.now_ms()

        body = self.create(time_ms=create_time)

        row = self.transaction_row("payme")
        self.assertEqual(body["result"], {"create_time": create_time, "transaction": str(row.id), "state": 1})
        self.assertEqual(row.provider_transaction_id, "pm-1")
        self.assertEqual(row.state, Transaction.State.PENDING)

    def test_create_is_idempotent(self) -> None:
        first = self.create()
        second = self.create()

        self.assertEqual(first["result"], second["result"])
        self.assertEqual(Transaction.objects.count(), 1)

    def test_second_pending_transaction_is_refused(self) -> None:
        self.create("pm-1")

        body = self.create("pm-2")

        self.assertEqual(body["error"]["code"], -31050)
        self.assertEqual(self.transaction_row("payme").provider_transaction_id, "pm-1")

    def test_expired_pending_transaction_is_replaced(self) -> None:
        self.create("pm-1", time_ms=self.now_ms() - TWELVE_MINUTES_MS - 1000)

        body = self.create("pm-2")

        self.assertIn("result", body, body)
        row = self.transaction_row("payme")
        self.assertEqual(row.provider_transaction_id, "pm-2")
        self.assertEqual(row.state, Transaction.State.PENDING)
        previous = row.provider_data["previous_attempts"][0]
        self.assertEqual(previous["provider_transaction_id"], "pm-1")
        self.assertEqual(previous["cancel_reason"], 4)

    def test_replaced_attempt_is_still_reported_by_its_id(self) -> None:
        old_time = self.now_ms() - TWELVE_MINUTES_MS - 1000
        self.create("pm-1", time_ms=old_time)
        self.create("pm-2")
        row = self.transaction_row("payme")

        checked = self.rpc("CheckTransaction", {"id": "pm-1"})["result"]

        self.assertEqual(checked["state"], -1)
        self.assertEqual(checked["reason"], 4)
        self.assertEqual(checked["create_time"], old_time)
        self.assertEqual(checked["cancel_time"], self.now_ms())
        self.assertEqual(checked["perform_time"], 0)
        self.assertEqual(checked["transaction"], str(row.id))

        cancelled = self.rpc("CancelTransaction", {"id": "pm-1", "reason": 3})["result"]
        self.assertEqual(cancelled["state"], -1)
        self.assertEqual(cancelled["cancel_time"], self.now_ms())

        self.assertEqual(self.rpc("PerformTransaction", {"id": "pm-1"})["error"]["code"], -31008)
        self.assertEqual(self.create("pm-1")["error"]["code"], -31008)

        row = self.transaction_row("payme")
        self.assertEqual(row.provider_transaction_id, "pm-2")
        self.assertEqual(row.state, Transaction.State.PENDING)

    def test_statement_lists_replaced_attempts(self) -> None:
        old_time = self.now_ms() - TWELVE_MINUTES_MS - 1000
        self.create("pm-1", time_ms=old_time)
        self.create("pm-2")

        result = self.rpc("GetStatement", {"from": old_time, "to": self.now_ms()})["result"]

        self.assertEqual([entry["id"] for entry in result["transactions"]], ["pm-1", "pm-2"])
        self.assertEqual([entry["state"] for entry in result["transactions"]], [-1, 1])
        self.assertEqual(result["transactions"][0]["reason"], 4)

    def test_expired_transaction_cannot_be_performed(self) -> None:
        self.create("pm-1", time_ms=self.now_ms() - TWELVE_MINUTES_MS - 1000)

        body = self.rpc("PerformTransaction", {"id": "pm-1"})

        self.assertEqual(body["error"]["code"], -31008)
        row = self.transaction_row("payme")
        self.assertEqual(row.state, Transaction.State.FAILED)
        self.assertEqual(row.cancel_reason, 4)
        self.assertEqual(self.booking_row().status, Booking.Status.SELECTED)

    @override_settings(PAYME_TRANSACTION_TIMEOUT_MS=60 * 60 * 1000)
    def test_timeout_is_configurable(self) -> None:
        self.create("pm-1", time_ms=self.now_ms() - TWELVE_MINUTES_MS - 1000)

        body = self.rpc("PerformTransaction", {"id": "pm-1"})

        self.assertEqual(body["result"]["state"], 2)

    def test_perform_approves_booking(self) -> None:
        self.create()

        body = self.rpc("PerformTransaction", {"id": "pm-1"})

        row = self.transaction_row("payme")
        self.assertEqual(body["result"], {"transaction": str(row.id), "perform_time": self.now_ms(), "state": 2})
        self.assertEqual(row.state, Transaction.State.PAID)
        booking = self.booking_row()
        self.assertEqual(booking.status, Booking.Status.APPROVED)
        self.assertIsNotNone(booking.paid_at)

    def test_perform_is_idempotent(self) -> None:
        self.create()
        first = self.rpc("PerformTransaction", {"id": "pm-1"})
        self.clock.advance(minutes=1)

        second = self.rpc("PerformTransaction", {"id": "pm-1"})

        self.assertEqual(first["result"], second["result"])

    def test_perform_unknown_transaction(self) -> None:
        self.assertEqual(self.rpc("PerformTransaction", {"id": "missing"})["error"]["code"], -31003)

    def test_paid_booking_refuses_new_transactions(self) -> None:
        self.create()
        self.rpc("PerformTransaction", {"id": "pm-1"})

        body = self.rpc("CheckPerformTransaction", self.account())

        self.assertEqual(body["error"]["code"], -31060)

    def test_cancel_pending_transaction(self) -> None:
        self.create()

        body = self.rpc("CancelTransaction", {"id": "pm-1", "reason": 3})

        self.assertEqual(body["result"]["state"], -1)
        self.assertEqual(body["result"]["cancel_time"], self.now_ms())
        row = self.transaction_row("payme")
        self.assertEqual(row.state, Transaction.State.FAILED)
        self.assertEqual(row.cancel_reason, 3)
        self.assertEqual(self.booking_row().status, Booking.Status.SELECTED)

    def test_cancel_is_idempotent(self) -> None:
        self.create()
        first = self.rpc("CancelTransaction", {"id": "pm-1", "reason": 3})

        second = self.rpc("CancelTransaction", {"id": "pm-1", "reason": 5})

        self.assertEqual(first["result"], second["result"])
        self.assertEqual(self.transaction_row("payme").cancel_reason, 3)

    def test_performed_transaction_cannot_be_cancelled(self) -> None:
        self.create()
        self.rpc("PerformTransaction", {"id": "pm-1"})

        body = self.rpc("CancelTransaction", {"id": "pm-1", "reason": 5})

        self.assertEqual(body["error"]["code"], -31007)
        self.assertEqual(self.transaction_row("payme").state, Transaction.State.PAID)

    def test_check_transaction(self) -> None:
        create_time = self.now_ms()
        self.create(time_ms=create_time)

        result = self.rpc("CheckTransaction", {"id": "pm-1"})["result"]

        self.assertEqual(result["create_time"], create_time)
        self.assertEqual(result["perform_time"], 0)
        self.assertEqual(result["state"], 1)
        self.assertIsNone(result["reason"])

    def test_get_statement(self) -> None:
        create_time = self.now_ms()
        self.create(time_ms=create_time)

        result = self.rpc("GetStatement", {"from": create_time - 1000, "to": create_time + 1000})["result"]

        [entry] = result["transactions"]
        self.assertEqual(entry["id"], "pm-1")
        self.assertEqual(entry["amount"], AMOUNT_TIYIN)
        self.assertEqual(entry["account"], {"booking_id": self.booking.unique_request_id})

        outside = self.rpc("GetStatement", {"from": create_time + 1, "to": create_time + 1000})["result"]
        self.assertEqual(outside["transactions"], [])
