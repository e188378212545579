"""Serializers for payment transactions."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Transaction


class TransactionSerializer(serializers.ModelSerializer):
    state_display = serializers.CharField(source="get_state_display", read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "provider",
            "provider_transaction_id",
            "state",
            "state_display",
            "amount",
            "currency",
            "perform_date",
            "cancel_date",
            "cancel_reason",
            "redirect_url",
            "signature_valid",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OctoPrepareSerializer(serializers.Serializer):
    booking = serializers.UUIDField()
    return_url = serializers.URLField(max_length=500)
    language = serializers.ChoiceField(choices=["uz", "ru", "en"], default="uz")
