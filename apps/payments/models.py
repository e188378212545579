"""Payment persistence models."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Transaction(models.Model):
    """One payment attempt record per provider and booking. Never deleted."""

    class Provider(models.TextChoices):
        CLICK = "click", _("Click")
        PAYME = "payme", _("Payme")
        OCTO = "octo", _("Octo")

    class State(models.IntegerChoices):
        FAILED = -1, _("Failed")
        PENDING = 1, _("Pending")
        PAID = 2, _("Paid")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    provider = models.CharField(max_length=16, choices=Provider.choices)
    provider_transaction_id = models.CharField(max_length=64, null=True, blank=True)
    state = models.SmallIntegerField(choices=State.choices, default=State.PENDING)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="UZS")
    provider_data = models.JSONField(default=dict, blank=True)

    perform_date = models.DateTimeField(null=True, blank=True)
    cancel_date = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.SmallIntegerField(null=True, blank=True)
    merchant_prepare_id = models.BigIntegerField(null=True, blank=True)
    provider_create_time = models.BigIntegerField(
        null=True,
        blank=True,
        help_text=_("Provider-side creation time, ms since epoch."),
    )
    redirect_url = models.URLField(max_length=500, blank=True)
    signature_valid = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Transaction")
        verbose_name_plural = _("Transactions")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["provider", "booking"], name="transaction_provider_booking_uniq"),
            models.UniqueConstraint(
                fields=["provider", "provider_transaction_id"],
                condition=models.Q(provider_transaction_id__isnull=False),
                name="transaction_provider_txn_uniq",
            ),
        ]
        indexes = [
            models.Index(fields=["booking", "state"], name="transaction_booking_state_idx"),
            models.Index(fields=["provider", "provider_create_time"], name="transaction_create_time_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.provider}:{self.provider_transaction_id or '-'} ({self.get_state_display()})"
