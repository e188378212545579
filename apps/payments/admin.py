from django.contrib import admin

from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "provider",
        "provider_transaction_id",
        "booking",
        "amount",
        "state",
        "signature_valid",
        "created_at",
    )
    search_fields = ("provider_transaction_id", "booking__unique_request_id")
    list_filter = ("provider", "state", "signature_valid")
    readonly_fields = ("provider_data", "perform_date", "cancel_date", "created_at", "updated_at")
