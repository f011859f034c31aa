from studio_bookings.models.bookings import Booking, BookingStatus, CheckInMethod
from studio_bookings.models.memberships import Membership, MembershipKind, MembershipStatus
from studio_bookings.models.sessions import ClassSession, SessionStatus

__all__ = [
    "Booking",
    "BookingStatus",
    "CheckInMethod",
    "ClassSession",
    "Membership",
    "MembershipKind",
    "MembershipStatus",
    "SessionStatus",
]
