"""
shared/exceptions.py
Domain error taxonomy for the booking core.
Raised by service code, mapped to JSON responses by the handler in main.py.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class. Every failure is scoped to the single operation that raised it."""

    status_code: int = 400
    code: str = "domain_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self, request_id: Optional[str] = None) -> dict:
        body = {
            "detail": self.message,
            "code": self.code,
            "context": {k: str(v) for k, v in self.context.items()},
            "retryable": self.retryable,
        }
        if request_id:
            body["request_id"] = request_id
        return body


class ValidationError(DomainError):
    """Malformed or out-of-range input, rejected before any state mutation."""
    status_code = 422
    code = "validation_error"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class AuthorizationError(DomainError):
    """Actor lacks the role or ownership relation the operation requires."""
    status_code = 403
    code = "not_authorized"


class AvailabilityError(DomainError):
    status_code = 409
    code = "not_available"


class NotCancellableError(DomainError):
    status_code = 409
    code = "not_cancellable"


class DuplicateReviewError(DomainError):
    status_code = 409
    code = "duplicate_review"


class BookingNotCompletedError(DomainError):
    status_code = 400
    code = "booking_not_completed"


class InvalidTransitionError(DomainError):
    status_code = 409
    code = "invalid_transition"


class ConcurrencyConflictError(DomainError):
    """A concurrent writer won the race. The caller must retry the whole operation."""
    status_code = 409
    code = "concurrency_conflict"
    retryable = True
