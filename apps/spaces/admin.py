"""Admin registrations for spaces."""

from __future__ import annotations

from django.contrib import admin

from .models import Space


@admin.register(Space)
class SpaceAdmin(admin.ModelAdmin):
    list_display = ("title", "owner", "status", "price", "check_in", "check_out", "minimum_hours", "cooldown")
    list_filter = ("status",)
    search_fields = ("title", "address", "owner__email")
    readonly_fields = ("created_at", "updated_at")
