"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking, BookingTimeSlot


class BookingTimeSlotInline(admin.TabularInline):
    model = BookingTimeSlot
    extra = 0
    can_delete = False
    readonly_fields = ("date", "start_time", "end_time", "day_of_week")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "unique_request_id",
        "space",
        "user",
        "status",
        "check_in_date",
        "final_total",
        "paid_at",
        "created_at",
    )
    list_filter = ("status", "check_in_date")
    search_fields = ("unique_request_id", "space__title", "user__email", "guest_phone")
    readonly_fields = (
        "unique_request_id",
        "status",
        "selected_at",
        "approved_at",
        "rejected_at",
        "cancelled_at",
        "paid_at",
        "payment_response",
        "payment_override_by",
        "payment_override_reason",
        "created_at",
        "updated_at",
    )
    inlines = [BookingTimeSlotInline]
