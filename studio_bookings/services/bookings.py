import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_bookings.core.config import get_settings
from studio_bookings.core.exceptions import (
    AlreadyBookedError,
    BookingNotFoundError,
    NotBookingOwnerError,
    NoCreditsRemainingError,
    SeatRaceLostError,
    SessionClosedError,
    SessionFullError,
    SessionNotFoundError,
)
from studio_bookings.core.timeutil import as_utc, utcnow
from studio_bookings.models.bookings import SEAT_HOLDING_STATUSES, Booking, BookingStatus
from studio_bookings.models.sessions import ClassSession, SessionStatus
from studio_bookings.services import eligibility, ledger, waitlist
from studio_bookings.services import memberships as membership_service
from studio_bookings.services.locks import locked_session
from studio_bookings.services.memberships import MembershipGateway
from studio_bookings.services.notifications import NotificationKind, Notifier, Outbox
from studio_bookings.services.state_machine import BookingEvent, apply_transition

logger = logging.getLogger(__name__)


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking


def create_booking(
    db: Session,
    *,
    session_id: int,
    member_id: int,
    memberships: MembershipGateway | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Booking:
    """
    Book a seat, or join the waitlist when the class is full.

    Eligibility is checked once up front to fail fast, then again under the
    session lock together with the seat reservation, the credit deduction and
    the row insert, all in one transaction.
    """
    memberships = memberships or membership_service.get_membership_gateway()
    now = now or utcnow()

    eligibility.check_eligibility(
        db, member_id=member_id, session_id=session_id, memberships=memberships, now=now
    ).raise_for_rejection()

    session = db.get(ClassSession, session_id)
    if session is not None and not session.waitlist_enabled and session.booked_count >= session.capacity:
        raise SessionFullError("Class is full", details={"session_id": session_id})

    outbox = Outbox()
    with locked_session(db, session_id) as session:
        booking = _create_booking_locked(db, session, member_id, memberships, outbox, now)
    outbox.dispatch(notifier)
    return booking


def _create_booking_locked(
    db: Session,
    session: ClassSession,
    member_id: int,
    memberships: MembershipGateway,
    outbox: Outbox,
    now: datetime,
) -> Booking:
    result = eligibility.evaluate(db, member_id=member_id, session=session, memberships=memberships, now=now)
    result.raise_for_rejection()

    existing = eligibility.find_booking(db, member_id=member_id, session_id=session.id)

    if ledger.reserve_seat(db, session.id):
        credit_deducted = False
        if result.uses_credits and result.membership_id is not None:
            if not memberships.consume_credit(db, result.membership_id):
                # Another session spent the last credit since the check above.
                raise NoCreditsRemainingError("Member has no class credits remaining")
            credit_deducted = True
        values = dict(
            waitlist_position=None,
            membership_id=result.membership_id,
            credit_deducted=credit_deducted,
            booked_at=now,
            cancelled_at=None,
            promoted_at=None,
            checked_in_at=None,
            check_in_method=None,
        )
        event = BookingEvent.REBOOK
        status = BookingStatus.BOOKED
    elif session.waitlist_enabled:
        ledger.join_waitlist(db, session.id)
        values = dict(
            waitlist_position=waitlist.next_position(db, session.id),
            membership_id=None,
            credit_deducted=False,
            booked_at=now,
            cancelled_at=None,
            promoted_at=None,
            checked_in_at=None,
            check_in_method=None,
        )
        event = BookingEvent.REJOIN_WAITLIST
        status = BookingStatus.WAITLISTED
    else:
        raise SeatRaceLostError(
            "The last seat was taken by another request",
            details={"session_id": session.id},
        )

    if existing is not None:
        booking = apply_transition(db, existing, event, **values)
    else:
        booking = Booking(session_id=session.id, member_id=member_id, status=status.value, **values)
        db.add(booking)
        try:
            db.flush()
        except IntegrityError:
            raise AlreadyBookedError("Member already has a booking for this class") from None

    logger.info(
        "booking_created",
        extra={
            "booking_id": booking.id,
            "session_id": session.id,
            "member_id": member_id,
            "status": booking.status,
            "waitlist_position": booking.waitlist_position,
        },
    )
    outbox.add(
        member_id,
        NotificationKind.BOOKING_CONFIRMED,
        booking_id=booking.id,
        session_id=session.id,
        status=booking.status,
        waitlist_position=booking.waitlist_position,
    )
    return booking


def cancel_booking(
    db: Session,
    booking_id: int,
    *,
    member_id: int | None = None,
    memberships: MembershipGateway | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Booking:
    """
    Cancel a booking or waitlist entry.

    A freed seat goes to the head of the waitlist in the same transaction.
    Class-pack credits are refunded unless the cancellation is inside the
    late-cancel window.
    """
    memberships = memberships or membership_service.get_membership_gateway()
    now = now or utcnow()

    booking = get_booking(db, booking_id)
    if member_id is not None and booking.member_id != member_id:
        raise NotBookingOwnerError("You can only cancel your own bookings", details={"booking_id": booking_id})

    outbox = Outbox()
    with locked_session(db, booking.session_id) as session:
        booking = get_booking(db, booking_id)
        if session.status in (SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value):
            raise SessionClosedError("Class has already finished", details={"session_id": session.id})

        previous = BookingStatus(booking.status)
        apply_transition(db, booking, BookingEvent.CANCEL, waitlist_position=None, cancelled_at=now)

        if previous is BookingStatus.BOOKED:
            ledger.release_seat(db, session.id)
            if booking.credit_deducted and booking.membership_id is not None and _refundable(session, now):
                memberships.refund_credit(db, booking.membership_id)
                _mark_credit_refunded(db, booking)
            waitlist.fill_open_seats(db, session, memberships=memberships, outbox=outbox, now=now)
        else:
            ledger.leave_waitlist(db, session.id)
            waitlist.compact_positions(db, session.id)

        logger.info(
            "booking_cancelled",
            extra={"booking_id": booking.id, "session_id": session.id, "previous_status": previous.value},
        )
    outbox.dispatch(notifier)
    return booking


def _refundable(session: ClassSession, now: datetime) -> bool:
    window = timedelta(hours=get_settings().late_cancel_window_hours)
    return now < as_utc(session.start_time) - window


def _mark_credit_refunded(db: Session, booking: Booking) -> None:
    booking.credit_deducted = False
    db.flush()


def promote_from_waitlist(
    db: Session,
    session_id: int,
    booking_id: int,
    *,
    memberships: MembershipGateway | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Booking:
    """Promote one specific waitlisted booking, ignoring queue order."""
    memberships = memberships or membership_service.get_membership_gateway()
    now = now or utcnow()

    outbox = Outbox()
    with locked_session(db, session_id) as session:
        booking = get_booking(db, booking_id)
        booking = waitlist.promote_specific(
            db, session, booking, memberships=memberships, outbox=outbox, now=now
        )
    outbox.dispatch(notifier)
    return booking


def get_roster(db: Session, session_id: int) -> list[Booking]:
    if db.get(ClassSession, session_id) is None:
        raise SessionNotFoundError(session_id)
    return list(
        db.scalars(
            select(Booking)
            .where(Booking.session_id == session_id)
            .where(Booking.status.in_(SEAT_HOLDING_STATUSES))
            .order_by(Booking.booked_at, Booking.id)
            .execution_options(populate_existing=True)
        )
    )


def get_waitlist(db: Session, session_id: int) -> list[Booking]:
    if db.get(ClassSession, session_id) is None:
        raise SessionNotFoundError(session_id)
    return waitlist.list_waitlist(db, session_id)


def get_member_bookings(db: Session, member_id: int, *, upcoming: bool = True, now: datetime | None = None) -> list[Booking]:
    now = now or utcnow()
    stmt = select(Booking).join(ClassSession).where(Booking.member_id == member_id)
    if upcoming:
        stmt = stmt.where(
            Booking.status.in_([BookingStatus.BOOKED.value, BookingStatus.WAITLISTED.value]),
            ClassSession.start_time >= now,
        ).order_by(ClassSession.start_time)
    else:
        stmt = stmt.order_by(ClassSession.start_time.desc())
    return list(db.scalars(stmt.execution_options(populate_existing=True)))


def get_session_stats(db: Session, session_id: int) -> dict:
    session = db.get(ClassSession, session_id, populate_existing=True)
    if not session:
        return {}

    by_status = dict(
        db.execute(
            select(Booking.status, func.count(Booking.id))
            .where(Booking.session_id == session_id)
            .group_by(Booking.status)
        ).all()
    )

    return {
        "session_id": session.id,
        "status": session.status,
        "capacity": session.capacity,
        "booked_count": session.booked_count,
        "waitlist_count": session.waitlist_count,
        "checked_in_count": int(by_status.get(BookingStatus.CHECKED_IN.value, 0)),
        "no_show_count": int(by_status.get(BookingStatus.NO_SHOW.value, 0)),
        "cancelled_count": int(by_status.get(BookingStatus.CANCELLED.value, 0)),
    }


def get_attendance_report(db: Session) -> dict:
    """Return aggregated totals across all sessions."""
    total_sessions = db.scalar(select(func.count(ClassSession.id)))
    total_capacity = db.scalar(select(func.sum(ClassSession.capacity)))
    total_booked = db.scalar(select(func.sum(ClassSession.booked_count)))
    total_waitlisted = db.scalar(select(func.sum(ClassSession.waitlist_count)))

    by_status = dict(db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status)).all())

    return {
        "total_sessions": int(total_sessions or 0),
        "total_capacity": int(total_capacity or 0),
        "total_booked": int(total_booked or 0),
        "total_waitlisted": int(total_waitlisted or 0),
        "total_checked_in": int(by_status.get(BookingStatus.CHECKED_IN.value, 0)),
        "total_no_show": int(by_status.get(BookingStatus.NO_SHOW.value, 0)),
        "total_cancelled": int(by_status.get(BookingStatus.CANCELLED.value, 0)),
    }
