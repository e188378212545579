"""API views for the booking domain."""

from __future__ import annotations

from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from shared.domain.clock import get_clock
from shared.domain.exceptions import AuthorizationError

from .application.command_handlers import (
    ApproveBookingCommand,
    ApproveBookingHandler,
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingCommand,
    CreateBookingHandler,
    RejectBookingCommand,
    RejectBookingHandler,
    SelectBookingCommand,
    SelectBookingHandler,
)
from .application.queries import booking_counts, competing_bookings, space_availability, visible_bookings
from .domain.entities import Actor
from .models import Booking
from .serializers import (
    AvailabilityQuerySerializer,
    AvailabilitySerializer,
    BookingCreateSerializer,
    BookingSerializer,
    BookingStatusSerializer,
)


def actor_for(user) -> Actor:
    try:
        return Actor.from_user(user)
    except ValueError:
        raise AuthorizationError("Your account role cannot use bookings")


class BookingViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    """
    Booking requests.

    Clients see their own requests, hosts the requests for their spaces,
    agents everything. State changes go through the command handlers.
    """

    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "space"]

    def get_queryset(self):  # type: ignore
        return visible_bookings(actor_for(self.request.user)).order_by("-created_at")

    def _read(self, booking_id):
        return Booking.objects.select_related("space", "user").prefetch_related("time_slots").get(pk=booking_id)

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = CreateBookingHandler(clock=get_clock()).handle(CreateBookingCommand(
            space_id=data["space"],
            actor=actor_for(request.user),
            time_slots=data["time_slots"],
            guest_name=data["guest_name"],
            guest_phone=data["guest_phone"],
            num_of_guests=data["num_of_guests"],
        ))
        read_serializer = BookingSerializer(self._read(booking.id), context=self.get_serializer_context())
        headers = self.get_success_headers(read_serializer.data)
        return Response(read_serializer.data, status=status.HTTP_201_CREATED, headers=headers)

    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):  # type: ignore
        serializer = BookingStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        actor = actor_for(request.user)
        clock = get_clock()
        target = data["status"]

        if target == Booking.Status.SELECTED:
            SelectBookingHandler(clock=clock).handle(SelectBookingCommand(booking_id=pk, actor=actor))
        elif target == Booking.Status.APPROVED:
            ApproveBookingHandler(clock=clock).handle(ApproveBookingCommand(
                booking_id=pk,
                actor=actor,
                payment_override=data["payment_override"],
                override_reason=data["override_reason"],
            ))
        elif target == Booking.Status.REJECTED:
            RejectBookingHandler(clock=clock).handle(
                RejectBookingCommand(booking_id=pk, actor=actor, reason=data["reason"])
            )
        else:
            CancelBookingHandler(clock=clock).handle(CancelBookingCommand(booking_id=pk, actor=actor))

        booking = self._read(pk)
        return Response(BookingSerializer(booking, context=self.get_serializer_context()).data)

    @action(detail=True, methods=["get"])
    def competing(self, request, pk=None):  # type: ignore
        bookings = competing_bookings(pk, actor_for(request.user), clock=get_clock())
        return Response(BookingSerializer(bookings, many=True, context=self.get_serializer_context()).data)

    @action(detail=False, methods=["get"])
    def counts(self, request):  # type: ignore
        return Response(booking_counts(actor_for(request.user), clock=get_clock()))


class SpaceAvailabilityView(APIView):
    """Bookable dates and start times of a space. Public."""

    permission_classes = [permissions.AllowAny]

    def get(self, request, space_id: int):  # type: ignore
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = space_availability(space_id, query.validated_data.get("date"), clock=get_clock())
        return Response(AvailabilitySerializer(data).data)
