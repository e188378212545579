"""URL configuration for the SpaceBook project."""

from django.contrib import admin  # type: ignore
from django.urls import include, path  # type: ignore
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView  # type: ignore

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/bookings/", include("apps.bookings.urls")),
    path("api/v1/spaces/", include("apps.spaces.urls")),
    path("api/v1/payments/", include("apps.payments.urls")),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="docs"),
]
