"""Message bus wiring for the bookings app.

Event subscribers write a structured audit line per lifecycle event.
Notification delivery lives outside this project; subscribers for it
register on the same bus.
"""

import structlog

from apps.bookings.application.command_handlers import (
    ConfirmBookingPaymentCommand,
    handle_confirm_booking_payment,
)
from apps.bookings.domain.events import (
    BookingApproved,
    BookingCancelled,
    BookingCreated,
    BookingPaid,
    BookingRejected,
    BookingSelected,
)
from shared.application.message_bus import message_bus

logger = structlog.get_logger("apps.bookings.audit")


def audit_booking_event(event) -> None:
    data = event.to_dict()
    data['booking_id'] = str(event.booking_id)
    if isinstance(event, BookingSelected):
        data['rejected_booking_ids'] = [str(i) for i in event.rejected_booking_ids]
    elif isinstance(event, BookingApproved):
        data.update(
            approved_by=event.approved_by,
            via_payment=event.via_payment,
            payment_override=event.payment_override,
        )
        if event.payment_override:
            data['override_reason'] = event.override_reason
    elif isinstance(event, BookingRejected):
        data.update(rejected_by=event.rejected_by, reason=event.reason)
    elif isinstance(event, BookingCancelled):
        data['cancelled_by'] = event.cancelled_by
    elif isinstance(event, BookingPaid):
        data['paid_at'] = event.paid_at.isoformat()
    logger.info("booking.event", **data)


def register_handlers() -> None:
    for event_type in (
        BookingCreated,
        BookingSelected,
        BookingApproved,
        BookingRejected,
        BookingCancelled,
        BookingPaid,
    ):
        message_bus.register_event_handler(event_type, audit_booking_event)
    message_bus.register_command_handler(ConfirmBookingPaymentCommand, handle_confirm_booking_payment)
