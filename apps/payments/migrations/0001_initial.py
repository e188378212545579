import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "provider",
                    models.CharField(
                        choices=[("click", "Click"), ("payme", "Payme"), ("octo", "Octo")], max_length=16
                    ),
                ),
                ("provider_transaction_id", models.CharField(blank=True, max_length=64, null=True)),
                (
                    "state",
                    models.SmallIntegerField(choices=[(-1, "Failed"), (1, "Pending"), (2, "Paid")], default=1),
                ),
                ("amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("currency", models.CharField(default="UZS", max_length=3)),
                ("provider_data", models.JSONField(blank=True, default=dict)),
                ("perform_date", models.DateTimeField(blank=True, null=True)),
                ("cancel_date", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.SmallIntegerField(blank=True, null=True)),
                ("merchant_prepare_id", models.BigIntegerField(blank=True, null=True)),
                (
                    "provider_create_time",
                    models.BigIntegerField(
                        blank=True, help_text="Provider-side creation time, ms since epoch.", null=True
                    ),
                ),
                ("redirect_url", models.URLField(blank=True, max_length=500)),
                ("signature_valid", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="bookings.booking",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("provider", "booking"), name="transaction_provider_booking_uniq"),
                    models.UniqueConstraint(
                        condition=models.Q(provider_transaction_id__isnull=False),
                        fields=("provider", "provider_transaction_id"),
                        name="transaction_provider_txn_uniq",
                    ),
                ],
                "indexes": [
                    models.Index(fields=["booking", "state"], name="transaction_booking_state_idx"),
                    models.Index(fields=["provider", "provider_create_time"], name="transaction_create_time_idx"),
                ],
            },
        ),
    ]
