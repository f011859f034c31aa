"""
Booking eligibility.

``check_eligibility`` is read-only and safe to call from anywhere. Its answer
can be stale by the time a booking commits, so the booking path calls
``evaluate`` again while holding the session lock.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from studio_bookings.core.config import get_settings
from studio_bookings.core.exceptions import REJECTIONS_BY_CODE, EligibilityError, SessionNotFoundError
from studio_bookings.core.timeutil import as_utc, utcnow
from studio_bookings.models.bookings import Booking, BookingStatus
from studio_bookings.models.sessions import ClassSession, SessionStatus
from studio_bookings.services import memberships as membership_service
from studio_bookings.services.memberships import MembershipGateway

ALREADY_BOOKED = "ALREADY_BOOKED"
SESSION_CLOSED = "SESSION_CLOSED"


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: str | None = None
    membership_id: int | None = None
    uses_credits: bool = False

    def raise_for_rejection(self) -> None:
        if self.eligible:
            return
        error_cls = REJECTIONS_BY_CODE.get(self.reason or "", EligibilityError)
        raise error_cls(_MESSAGES.get(self.reason or "", "Member cannot book this class"), code=self.reason)


_MESSAGES = {
    ALREADY_BOOKED: "Member already has a booking for this class",
    SESSION_CLOSED: "Class is not open for booking",
    "NO_VALID_MEMBERSHIP": "Member has no active membership",
    "NO_CREDITS_REMAINING": "Member has no class credits remaining",
}


def find_booking(db: Session, *, member_id: int, session_id: int) -> Booking | None:
    return db.scalars(
        select(Booking)
        .where(Booking.member_id == member_id)
        .where(Booking.session_id == session_id)
        .execution_options(populate_existing=True)
    ).first()


def booking_open(session: ClassSession, now: datetime) -> bool:
    if session.status != SessionStatus.SCHEDULED.value:
        return False
    cutoff = timedelta(minutes=get_settings().booking_cutoff_minutes)
    return as_utc(session.start_time) > now + cutoff


def evaluate(
    db: Session,
    *,
    member_id: int,
    session: ClassSession,
    memberships: MembershipGateway,
    now: datetime,
) -> EligibilityResult:
    existing = find_booking(db, member_id=member_id, session_id=session.id)
    if existing is not None and existing.status != BookingStatus.CANCELLED.value:
        return EligibilityResult(eligible=False, reason=ALREADY_BOOKED)

    if not booking_open(session, now):
        return EligibilityResult(eligible=False, reason=SESSION_CLOSED)

    check = memberships.has_booking_eligibility(db, member_id, session, now)
    if not check.eligible:
        return EligibilityResult(eligible=False, reason=check.reason)

    return EligibilityResult(
        eligible=True,
        membership_id=check.membership_id,
        uses_credits=check.uses_credits,
    )


def check_eligibility(
    db: Session,
    *,
    member_id: int,
    session_id: int,
    memberships: MembershipGateway | None = None,
    now: datetime | None = None,
) -> EligibilityResult:
    session = db.get(ClassSession, session_id, populate_existing=True)
    if session is None:
        raise SessionNotFoundError(session_id)
    return evaluate(
        db,
        member_id=member_id,
        session=session,
        memberships=memberships or membership_service.get_membership_gateway(),
        now=now or utcnow(),
    )
