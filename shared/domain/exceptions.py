"""
Domain error taxonomy

Each error declares the structured payload it carries, so callers read
``exc.conflicting_slot`` or ``exc.requires_payment_check`` instead of
parsing messages. ``to_dict()`` is the uniform shape rendered by the API
layer (see ``shared.api.exception_handler``).
"""

from typing import Any


class DomainError(Exception):
    """Base class for errors raised by the booking and payment core."""

    code = 'domain_error'
    status_code = 400

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.code

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        data = {'error': self.code, 'detail': self.message}
        data.update(self.payload())
        return data


class ValidationError(DomainError):
    """Malformed slot, date or status input."""

    code = 'validation_error'
    status_code = 400

    def __init__(self, message: str, field: str | None = None, slot=None):
        super().__init__(message)
        self.field = field
        self.slot = slot

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.field:
            data['field'] = self.field
        if self.slot is not None:
            data['conflicting_slot'] = self.slot.to_dict()
        return data


class NotFoundError(DomainError):
    code = 'not_found'
    status_code = 404


class AuthorizationError(DomainError):
    code = 'forbidden'
    status_code = 403


class ConflictError(DomainError):
    """The requested slot is already taken."""

    code = 'slot_conflict'
    status_code = 422

    def __init__(self, message: str, conflicting_slot=None, conflicting_booking_id=None):
        super().__init__(message)
        self.conflicting_slot = conflicting_slot
        self.conflicting_booking_id = conflicting_booking_id

    def payload(self) -> dict[str, Any]:
        return {
            'conflicting_slot': self.conflicting_slot.to_dict() if self.conflicting_slot else None,
            'conflicting_booking_id': (
                str(self.conflicting_booking_id) if self.conflicting_booking_id else None
            ),
        }


class StateError(DomainError):
    """Illegal transition from a terminal or incompatible state."""

    code = 'invalid_state'
    status_code = 409

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status

    def payload(self) -> dict[str, Any]:
        return {'current_status': self.current_status} if self.current_status else {}


class AlreadyFinalized(StateError):
    code = 'already_finalized'


class PaymentConfirmationRequired(StateError):
    """Approval needs a confirmed payment or an explicit override."""

    code = 'requires_payment_check'
    requires_payment_check = True

    def payload(self) -> dict[str, Any]:
        data = super().payload()
        data['requires_payment_check'] = True
        return data


class ProviderProtocolError(DomainError):
    """
    Malformed, unsigned or out-of-protocol provider request.

    ``error_code`` is the provider's own numeric code; adapters put it
    on the wire unchanged.
    """

    code = 'provider_protocol_error'
    status_code = 400

    def __init__(self, message: str, error_code: int, data: Any = None):
        super().__init__(message)
        self.error_code = error_code
        self.data = data

    def payload(self) -> dict[str, Any]:
        return {'provider_error_code': self.error_code}


class TransientIOError(DomainError):
    """Network failure or timeout talking to a provider. Safe to retry."""

    code = 'provider_unavailable'
    status_code = 503
