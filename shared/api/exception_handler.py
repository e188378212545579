"""DRF exception handler rendering domain errors in one shape."""

from __future__ import annotations

import logging

from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler as drf_exception_handler  # type: ignore

from shared.domain.exceptions import DomainError, TransientIOError

logger = logging.getLogger(__name__)


def domain_exception_handler(exc, context):
    """
    ``DomainError`` -> ``{"error": code, "detail": message, ...payload}``
    with the error's own status code. Everything else goes through the
    stock DRF handler.
    """
    if isinstance(exc, DomainError):
        view = context.get("view")
        log = logger.warning if isinstance(exc, TransientIOError) else logger.info
        log(
            "%s in %s: %s",
            exc.__class__.__name__,
            view.__class__.__name__ if view else "unknown view",
            exc.message,
        )
        return Response(exc.to_dict(), status=exc.status_code)
    return drf_exception_handler(exc, context)
