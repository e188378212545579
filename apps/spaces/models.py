"""Space models for SpaceBook.

A space is rented by the hour. Besides the listing basics it carries the
availability configuration read by the booking engine: working hours
(per weekday with a default pair), minimum duration, cooldown between
bookings, blocked dates and blocked weekdays (0 = Sunday).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.core.exceptions import ValidationError  # type: ignore
from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Space(models.Model):
    """A bookable place owned by a host."""

    class Status(models.TextChoices):
        DRAFT = "draft", _("Draft")
        ACTIVE = "active", _("Active")
        INACTIVE = "inactive", _("Inactive")

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="spaces",
    )
    title = models.CharField(max_length=255)
    address = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=_("Price per hour."),
    )
    currency = models.CharField(max_length=3, default="UZS")
    max_guests = models.PositiveSmallIntegerField(default=1)

    check_in = models.CharField(
        max_length=5,
        default="09:00",
        help_text=_("Default opening time, HH:MM."),
    )
    check_out = models.CharField(
        max_length=5,
        default="17:00",
        help_text=_("Default closing time, HH:MM."),
    )
    weekday_time_slots = models.JSONField(
        default=dict,
        blank=True,
        help_text=_('Per-weekday hours, e.g. {"1": {"start": "10:00", "end": "18:00"}}; 0 = Sunday.'),
    )
    minimum_hours = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    cooldown = models.PositiveSmallIntegerField(
        default=30,
        help_text=_("Minutes kept free after each booking."),
    )
    blocked_dates = models.JSONField(default=list, blank=True, help_text=_("ISO dates, YYYY-MM-DD."))
    blocked_weekdays = models.JSONField(default=list, blank=True, help_text=_("0 = Sunday ... 6 = Saturday."))
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Space")
        verbose_name_plural = _("Spaces")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["owner", "status"], name="space_owner_status_idx"),
        ]

    def __str__(self) -> str:
        return self.title

    def clean(self) -> None:
        from apps.bookings.domain.availability import AvailabilityRules

        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValidationError({"end_date": _("End date must not be before start date.")})
        for value in self.blocked_dates or []:
            try:
                date.fromisoformat(str(value))
            except ValueError as exc:
                raise ValidationError({"blocked_dates": str(exc)}) from exc
        try:
            AvailabilityRules.from_space(self)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    def availability_rules(self):
        from apps.bookings.domain.availability import AvailabilityRules

        return AvailabilityRules.from_space(self)
