import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from studio_bookings.core.config import get_settings
from studio_bookings.core.exceptions import (
    CheckInWindowError,
    InvalidQRCodeError,
    NoBookingFoundError,
    NoShowNotAllowedError,
    SessionClosedError,
)
from studio_bookings.core.timeutil import as_utc, utcnow
from studio_bookings.models.bookings import Booking, BookingStatus, CheckInMethod
from studio_bookings.models.sessions import ClassSession, SessionStatus
from studio_bookings.services import qr_tokens
from studio_bookings.services.bookings import get_booking
from studio_bookings.services.eligibility import find_booking
from studio_bookings.services.locks import locked_session
from studio_bookings.services.notifications import NotificationKind, Notifier, Outbox
from studio_bookings.services.qr_tokens import CheckInTarget
from studio_bookings.services.state_machine import BookingEvent, apply_transition

logger = logging.getLogger(__name__)

OPEN_SESSION_STATUSES = (SessionStatus.SCHEDULED.value, SessionStatus.IN_PROGRESS.value)


def _ensure_check_in_open(session: ClassSession, now: datetime) -> None:
    if session.status not in OPEN_SESSION_STATUSES:
        raise SessionClosedError(
            "Class is not open for check-in",
            details={"session_id": session.id, "status": session.status},
        )

    settings = get_settings()
    if not settings.enforce_check_in_window:
        return

    opens_at = as_utc(session.start_time) - timedelta(minutes=settings.check_in_opens_minutes)
    if now < opens_at:
        raise CheckInWindowError(
            "Check-in is not yet open for this class",
            code="CHECK_IN_NOT_OPEN",
            details={"opens_at": opens_at.isoformat()},
        )
    if now > as_utc(session.end_time):
        raise CheckInWindowError("Check-in window has closed", details={"session_id": session.id})


def check_in(
    db: Session,
    booking_id: int,
    *,
    method: CheckInMethod = CheckInMethod.MANUAL,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Booking:
    """
    Mark a BOOKED member as attended.

    Repeating the call on a CHECKED_IN booking returns it unchanged, so a
    double scan has no further effect.
    """
    now = now or utcnow()

    booking = get_booking(db, booking_id)
    if booking.status == BookingStatus.CHECKED_IN.value:
        return booking

    outbox = Outbox()
    with locked_session(db, booking.session_id) as session:
        booking = get_booking(db, booking_id)
        if booking.status == BookingStatus.CHECKED_IN.value:
            return booking

        _ensure_check_in_open(session, now)
        apply_transition(
            db,
            booking,
            BookingEvent.CHECK_IN,
            checked_in_at=now,
            check_in_method=method.value,
        )
        logger.info(
            "booking_checked_in",
            extra={"booking_id": booking.id, "session_id": session.id, "method": method.value},
        )
        outbox.add(
            booking.member_id,
            NotificationKind.CHECK_IN_CONFIRMED,
            booking_id=booking.id,
            session_id=session.id,
            method=method.value,
        )
    outbox.dispatch(notifier)
    return booking


def check_in_with_qr(
    db: Session,
    token: str,
    *,
    resolver: Callable[[str], CheckInTarget | None] | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Booking:
    target = (resolver or qr_tokens.resolve_check_in_token)(token)
    if target is None:
        raise InvalidQRCodeError("QR code is not valid")

    booking = find_booking(db, member_id=target.member_id, session_id=target.session_id)
    if booking is None or booking.status not in (BookingStatus.BOOKED.value, BookingStatus.CHECKED_IN.value):
        raise NoBookingFoundError(
            "No booking found for this member and class",
            details={"member_id": target.member_id, "session_id": target.session_id},
        )

    return check_in(db, booking.id, method=CheckInMethod.QR_SCAN, notifier=notifier, now=now)


def _ensure_no_show_allowed(session: ClassSession, now: datetime) -> None:
    if session.status == SessionStatus.IN_PROGRESS.value:
        return
    if session.status == SessionStatus.SCHEDULED.value and now >= as_utc(session.start_time):
        return
    raise NoShowNotAllowedError(
        "A no-show can only be recorded once the class has started",
        details={
            "session_id": session.id,
            "status": session.status,
            "start_time": as_utc(session.start_time).isoformat(),
        },
    )


def mark_no_show(db: Session, booking_id: int, *, now: datetime | None = None) -> Booking:
    """
    Record that a BOOKED member did not attend.

    Only allowed for a class that is running or past its start time. The
    member keeps the seat for history purposes: booked_count does not change
    and nobody is promoted from the waitlist.
    """
    now = now or utcnow()
    booking = get_booking(db, booking_id)
    if booking.status == BookingStatus.NO_SHOW.value:
        return booking

    with locked_session(db, booking.session_id) as session:
        booking = get_booking(db, booking_id)
        if booking.status == BookingStatus.NO_SHOW.value:
            return booking
        _ensure_no_show_allowed(session, now)
        apply_transition(db, booking, BookingEvent.MARK_NO_SHOW)
        logger.info("booking_no_show", extra={"booking_id": booking.id, "session_id": session.id})
    return booking
