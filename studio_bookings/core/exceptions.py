"""
Domain exceptions for class booking.

Every error carries a stable ``code`` that callers can switch on, plus a
``retryable`` flag: concurrency conflicts are worth re-attempting, eligibility
rejections are not. Routes turn them into HTTP errors with
``to_http_exception()``.
"""

from typing import Any

from fastapi import HTTPException, status


class BookingDomainError(Exception):
    """Base exception for all booking domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "retryable": self.retryable,
                "details": self.details,
            },
        )


# ---------- Validation ----------
class ValidationError(BookingDomainError):
    """Malformed or out-of-range input."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION_ERROR"


# ---------- Not found / permissions ----------
class NotFoundError(BookingDomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    default_code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: int) -> None:
        super().__init__(f"Class session {session_id} not found", details={"session_id": session_id})


class BookingNotFoundError(NotFoundError):
    default_code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: int) -> None:
        super().__init__(f"Booking {booking_id} not found", details={"booking_id": booking_id})


class NotBookingOwnerError(BookingDomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "NOT_BOOKING_OWNER"


# ---------- Eligibility rejections ----------
class EligibilityError(BookingDomainError):
    """A business rule rejected the request. Surfaced verbatim, never retried."""

    status_code = 422
    default_code = "NOT_ELIGIBLE"


class AlreadyBookedError(EligibilityError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "ALREADY_BOOKED"


class SessionClosedError(EligibilityError):
    default_code = "SESSION_CLOSED"


class SessionFullError(EligibilityError):
    default_code = "SESSION_FULL"


class NoValidMembershipError(EligibilityError):
    default_code = "NO_VALID_MEMBERSHIP"


class NoCreditsRemainingError(EligibilityError):
    default_code = "NO_CREDITS_REMAINING"


class InvalidQRCodeError(EligibilityError):
    default_code = "INVALID_QR_CODE"


class NoBookingFoundError(EligibilityError):
    default_code = "NO_BOOKING_FOUND"


class CheckInWindowError(EligibilityError):
    default_code = "CHECK_IN_CLOSED"


class NoShowNotAllowedError(EligibilityError):
    default_code = "NO_SHOW_NOT_ALLOWED"


class InstructorConflictError(EligibilityError):
    default_code = "INSTRUCTOR_CONFLICT"


# ---------- Concurrency conflicts ----------
class ConcurrencyConflictError(BookingDomainError):
    """Lost a race against a concurrent request; the caller may try again."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONCURRENCY_CONFLICT"
    retryable = True


class SeatRaceLostError(ConcurrencyConflictError):
    default_code = "SESSION_FULL_RACE_LOST"


class StateConflictError(ConcurrencyConflictError):
    default_code = "STATE_CONFLICT"


class InvalidTransitionError(StateConflictError):
    default_code = "INVALID_TRANSITION"


class SessionBusyError(ConcurrencyConflictError):
    default_code = "SESSION_BUSY"


REJECTIONS_BY_CODE = {
    cls.default_code: cls
    for cls in (
        AlreadyBookedError,
        SessionClosedError,
        SessionFullError,
        NoValidMembershipError,
        NoCreditsRemainingError,
    )
}
