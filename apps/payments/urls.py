from django.urls import path

from .views import (
    BookingPaymentRefreshView,
    BookingTransactionsView,
    OctoPrepareView,
    click_complete,
    click_prepare,
    octo_notify,
    payme_endpoint,
)

urlpatterns = [
    path("click/prepare/", click_prepare, name="click_prepare"),
    path("click/complete/", click_complete, name="click_complete"),
    path("payme/", payme_endpoint, name="payme_endpoint"),
    path("octo/notify/", octo_notify, name="octo_notify"),
    path("octo/prepare/", OctoPrepareView.as_view(), name="octo_prepare"),
    path("bookings/<uuid:booking_id>/", BookingTransactionsView.as_view(), name="booking_transactions"),
    path("bookings/<uuid:booking_id>/refresh/", BookingPaymentRefreshView.as_view(), name="booking_payment_refresh"),
]
