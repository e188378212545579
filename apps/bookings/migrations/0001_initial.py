import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("spaces", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("unique_request_id", models.CharField(editable=False, max_length=32, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("selected", "Selected"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("check_in_date", models.DateField()),
                ("check_out_date", models.DateField()),
                ("num_of_guests", models.PositiveSmallIntegerField(default=1)),
                ("guest_name", models.CharField(blank=True, max_length=255)),
                ("guest_phone", models.CharField(blank=True, max_length=20)),
                ("total_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("service_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("final_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("currency", models.CharField(default="UZS", max_length=3)),
                ("selected_at", models.DateTimeField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.CharField(blank=True, max_length=255)),
                (
                    "payment_response",
                    models.JSONField(
                        blank=True, default=dict, help_text="Last provider payload, for display and audit only."
                    ),
                ),
                ("payment_override_reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "payment_override_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Who approved without a recorded payment.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "space",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="bookings", to="spaces.space"
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Booking",
                "verbose_name_plural": "Bookings",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(check_out_date__gte=models.F("check_in_date")),
                        name="booking_valid_dates",
                    )
                ],
                "indexes": [
                    models.Index(fields=["space", "status"], name="booking_space_status_idx"),
                    models.Index(fields=["user", "status"], name="booking_user_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingTimeSlot",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("start_time", models.TimeField()),
                ("end_time", models.TimeField()),
                ("day_of_week", models.PositiveSmallIntegerField(help_text="0 = Sunday ... 6 = Saturday.")),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="time_slots",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Booking time slot",
                "verbose_name_plural": "Booking time slots",
                "ordering": ["date", "start_time"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(end_time__gt=models.F("start_time")),
                        name="booking_slot_valid_range",
                    )
                ],
                "indexes": [models.Index(fields=["date", "start_time"], name="booking_slot_date_idx")],
            },
        ),
    ]
