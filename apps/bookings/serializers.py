"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from shared.domain.value_objects import TimeSlot

from .models import Booking, BookingTimeSlot


class TimeSlotSerializer(serializers.Serializer):
    """One requested slot. ``startTime`` / ``endTime`` are accepted as aliases."""

    date = serializers.DateField()
    start_time = serializers.TimeField(required=False, format="%H:%M")
    end_time = serializers.TimeField(required=False, format="%H:%M")

    def to_internal_value(self, data):  # type: ignore
        if isinstance(data, dict):
            data = dict(data)
            for alias, name in (("startTime", "start_time"), ("endTime", "end_time")):
                if name not in data and alias in data:
                    data[name] = data[alias]
        attrs = super().to_internal_value(data)
        if not attrs.get("start_time") or not attrs.get("end_time"):
            raise serializers.ValidationError("Each slot needs a start_time and an end_time.")
        try:
            return TimeSlot(date=attrs["date"], start_time=attrs["start_time"], end_time=attrs["end_time"])
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))


class BookingCreateSerializer(serializers.Serializer):
    """Booking request from a client."""

    space = serializers.IntegerField(min_value=1)
    time_slots = TimeSlotSerializer(many=True, allow_empty=False)
    num_of_guests = serializers.IntegerField(min_value=1, default=1)
    guest_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    guest_phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")


class BookingStatusSerializer(serializers.Serializer):
    """Host or client decision on a booking."""

    STATUS_CHOICES = [
        Booking.Status.SELECTED.value,
        Booking.Status.APPROVED.value,
        Booking.Status.REJECTED.value,
        Booking.Status.CANCELLED.value,
    ]

    status = serializers.ChoiceField(choices=STATUS_CHOICES)
    payment_override = serializers.BooleanField(default=False)
    override_reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def validate(self, attrs):  # type: ignore
        if attrs.get("payment_override") and attrs["status"] != Booking.Status.APPROVED:
            raise serializers.ValidationError({"payment_override": "Only an approval can override payment."})
        return attrs


class BookingTimeSlotSerializer(serializers.ModelSerializer):
    start_time = serializers.TimeField(format="%H:%M")
    end_time = serializers.TimeField(format="%H:%M")

    class Meta:
        model = BookingTimeSlot
        fields = ["date", "start_time", "end_time", "day_of_week"]


class BookingSerializer(serializers.ModelSerializer):
    """Read representation of a booking."""

    space_id = serializers.ReadOnlyField(source="space.id")
    space_title = serializers.ReadOnlyField(source="space.title")
    host_id = serializers.ReadOnlyField(source="space.owner_id")
    user_id = serializers.ReadOnlyField(source="user.id")
    time_slots = BookingTimeSlotSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "unique_request_id",
            "space_id",
            "space_title",
            "host_id",
            "user_id",
            "status",
            "time_slots",
            "check_in_date",
            "check_out_date",
            "num_of_guests",
            "guest_name",
            "guest_phone",
            "total_price",
            "service_fee",
            "final_total",
            "currency",
            "selected_at",
            "approved_at",
            "rejected_at",
            "cancelled_at",
            "paid_at",
            "rejection_reason",
            "payment_override_by",
            "payment_override_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AvailabilityQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)


class AvailabilitySerializer(serializers.Serializer):
    space_id = serializers.IntegerField()
    title = serializers.CharField()
    timezone = serializers.CharField()
    current_date = serializers.DateField()
    date = serializers.DateField()
    available_dates = serializers.ListField(child=serializers.DateField())
    available_start_times = serializers.ListField(child=serializers.TimeField(format="%H:%M"))
    booked_slots = serializers.ListField(child=serializers.DictField())
    operating_hours = serializers.DictField()
    blocked_dates = serializers.ListField(child=serializers.DateField())
    blocked_weekdays = serializers.ListField(child=serializers.IntegerField())
