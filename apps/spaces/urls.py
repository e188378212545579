"""URL routing for spaces."""

from __future__ import annotations

from django.urls import path  # type: ignore

from apps.bookings.views import SpaceAvailabilityView

urlpatterns = [
    path("<int:space_id>/availability/", SpaceAvailabilityView.as_view(), name="space-availability"),
]
