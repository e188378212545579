from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Space",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("address", models.CharField(blank=True, max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[("draft", "Draft"), ("active", "Active"), ("inactive", "Inactive")],
                        default="active",
                        max_length=20,
                    ),
                ),
                (
                    "price",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0.00"), help_text="Price per hour.", max_digits=12
                    ),
                ),
                ("currency", models.CharField(default="UZS", max_length=3)),
                ("max_guests", models.PositiveSmallIntegerField(default=1)),
                ("check_in", models.CharField(default="09:00", help_text="Default opening time, HH:MM.", max_length=5)),
                ("check_out", models.CharField(default="17:00", help_text="Default closing time, HH:MM.", max_length=5)),
                (
                    "weekday_time_slots",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text='Per-weekday hours, e.g. {"1": {"start": "10:00", "end": "18:00"}}; 0 = Sunday.',
                    ),
                ),
                (
                    "minimum_hours",
                    models.PositiveSmallIntegerField(
                        default=1, validators=[django.core.validators.MinValueValidator(1)]
                    ),
                ),
                (
                    "cooldown",
                    models.PositiveSmallIntegerField(default=30, help_text="Minutes kept free after each booking."),
                ),
                ("blocked_dates", models.JSONField(blank=True, default=list, help_text="ISO dates, YYYY-MM-DD.")),
                (
                    "blocked_weekdays",
                    models.JSONField(blank=True, default=list, help_text="0 = Sunday ... 6 = Saturday."),
                ),
                ("start_date", models.DateField(blank=True, null=True)),
                ("end_date", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="spaces",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Space",
                "verbose_name_plural": "Spaces",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["owner", "status"], name="space_owner_status_idx")],
            },
        ),
    ]
