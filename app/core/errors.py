"""Domain errors.

Every caller-visible failure carries a machine-readable ``code`` next to the
human ``message`` so clients can branch on cause.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class ValidationError(DomainError):
    """Caller error. Never retried."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(DomainError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(DomainError):
    """Eligible but contested state, e.g. the slot was taken meanwhile."""

    status_code = 409
    default_code = "CONFLICT"


class BookingIneligibleError(ValidationError):
    default_code = "BOOKING_INELIGIBLE"


class InvariantViolation(DomainError):
    """Upstream sequencing bug. Fatal for the workflow instance."""

    default_code = "INVARIANT_VIOLATION"


class TransientError(DomainError):
    """Infrastructure hiccup. Eligible for the worker's retry policy."""

    status_code = 503
    default_code = "TRANSIENT_FAILURE"


class OrderNotFoundError(NotFoundError):
    default_code = "ORDER_NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    default_code = "PAYMENT_NOT_FOUND"


class PackNotFoundError(NotFoundError):
    default_code = "PACK_NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    default_code = "PRODUCT_NOT_FOUND"


class MentorNotFoundError(NotFoundError):
    default_code = "MENTOR_NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    default_code = "SESSION_NOT_FOUND"


TIME_SLOT_UNAVAILABLE = "TIME_SLOT_UNAVAILABLE"
OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
CALENDAR_NOT_CONNECTED = "CALENDAR_NOT_CONNECTED"
ORDER_REFUNDED = "ORDER_REFUNDED"
