"""Message bus wiring for the payments app."""

import structlog

from apps.payments.domain.events import TransactionOpened, TransactionStateChanged
from shared.application.message_bus import message_bus

logger = structlog.get_logger("apps.payments.audit")


def audit_transaction_event(event) -> None:
    data = event.to_dict()
    data.update(
        transaction_id=str(event.transaction_id),
        provider=event.provider,
        booking_id=str(event.booking_id),
        provider_transaction_id=event.provider_transaction_id,
    )
    if isinstance(event, TransactionStateChanged):
        data.update(old_state=event.old_state, new_state=event.new_state, cancel_reason=event.cancel_reason)
    else:
        data["amount"] = event.amount
    logger.info("payment.transaction", **data)


def register_handlers() -> None:
    message_bus.register_event_handler(TransactionOpened, audit_transaction_event)
    message_bus.register_event_handler(TransactionStateChanged, audit_transaction_event)
