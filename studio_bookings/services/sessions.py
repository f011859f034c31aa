import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from studio_bookings.core.config import get_settings
from studio_bookings.core.exceptions import (
    BookingDomainError,
    InstructorConflictError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from studio_bookings.core.timeutil import as_utc, utcnow
from studio_bookings.models.bookings import Booking, BookingStatus
from studio_bookings.models.sessions import ClassSession, SessionStatus
from studio_bookings.services import ledger, waitlist
from studio_bookings.services import memberships as membership_service
from studio_bookings.services.locks import locked_session
from studio_bookings.services.memberships import MembershipGateway
from studio_bookings.services.notifications import NotificationKind, Notifier, Outbox
from studio_bookings.services.state_machine import SessionEvent, apply_session_transition

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (BookingStatus.BOOKED.value, BookingStatus.WAITLISTED.value)
OPEN_SESSION_STATUSES = (SessionStatus.SCHEDULED.value, SessionStatus.IN_PROGRESS.value)


def get_session(db: Session, session_id: int) -> ClassSession:
    session = db.get(ClassSession, session_id, populate_existing=True)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session


def list_sessions(
    db: Session,
    *,
    studio_id: int,
    start_from: datetime | None = None,
    start_to: datetime | None = None,
    status: SessionStatus | str | None = None,
    location: str | None = None,
) -> list[ClassSession]:
    """Sessions of one studio ordered by start time. ``start_to`` is exclusive."""
    stmt = select(ClassSession).where(ClassSession.studio_id == studio_id)
    if start_from is not None:
        stmt = stmt.where(ClassSession.start_time >= as_utc(start_from))
    if start_to is not None:
        stmt = stmt.where(ClassSession.start_time < as_utc(start_to))
    if status is not None:
        stmt = stmt.where(ClassSession.status == SessionStatus(status).value)
    if location is not None:
        stmt = stmt.where(ClassSession.location == location)
    return list(db.scalars(stmt.order_by(ClassSession.start_time, ClassSession.id)))


def start_of_week(moment: datetime) -> datetime:
    """Sunday 00:00 UTC of the week containing ``moment``."""
    moment = as_utc(moment)
    days_since_sunday = (moment.weekday() + 1) % 7
    return (moment - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)


def get_weekly_schedule(
    db: Session,
    studio_id: int,
    week_start: datetime | None = None,
    location: str | None = None,
) -> list[ClassSession]:
    """Scheduled classes in the seven days from ``week_start`` (default: this week)."""
    week_start = as_utc(week_start) if week_start is not None else start_of_week(utcnow())
    return list_sessions(
        db,
        studio_id=studio_id,
        start_from=week_start,
        start_to=week_start + timedelta(days=7),
        status=SessionStatus.SCHEDULED,
        location=location,
    )


def create_session(
    db: Session,
    *,
    class_type: str,
    location: str,
    start_time: datetime,
    end_time: datetime,
    capacity: int,
    instructor_id: int | None = None,
    studio_id: int = 1,
    waitlist_enabled: bool | None = None,
) -> ClassSession:
    # Stored as UTC wall-clock; naive input is taken to be UTC already.
    start_time, end_time = as_utc(start_time), as_utc(end_time)
    if end_time <= start_time:
        raise ValidationError("Session must end after it starts")
    if capacity < 0:
        raise ValidationError("Capacity cannot be negative")

    if instructor_id is not None:
        clash = db.scalars(
            select(ClassSession.id)
            .where(ClassSession.instructor_id == instructor_id)
            .where(ClassSession.status.in_([SessionStatus.SCHEDULED.value, SessionStatus.IN_PROGRESS.value]))
            .where(ClassSession.start_time < end_time)
            .where(ClassSession.end_time > start_time)
        ).first()
        if clash is not None:
            raise InstructorConflictError(
                "Instructor has a conflicting class at this time",
                details={"instructor_id": instructor_id, "session_id": clash},
            )

    if waitlist_enabled is None:
        waitlist_enabled = get_settings().waitlist_enabled_default

    session = ClassSession(
        studio_id=studio_id,
        class_type=class_type,
        location=location,
        instructor_id=instructor_id,
        start_time=start_time,
        end_time=end_time,
        capacity=capacity,
        booked_count=0,
        waitlist_count=0,
        waitlist_enabled=waitlist_enabled,
        status=SessionStatus.SCHEDULED.value,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def update_capacity(
    db: Session,
    session_id: int,
    capacity: int,
    *,
    memberships: MembershipGateway | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> ClassSession:
    """Resize a class. New seats are handed to the waitlist straight away."""
    memberships = memberships or membership_service.get_membership_gateway()
    now = now or utcnow()

    outbox = Outbox()
    with locked_session(db, session_id) as session:
        if session.status not in OPEN_SESSION_STATUSES:
            raise SessionClosedError(
                "Cannot resize a class that has finished",
                details={"session_id": session_id, "status": session.status},
            )
        if capacity < session.booked_count:
            raise ValidationError(
                "Capacity cannot drop below the number of booked members",
                code="CAPACITY_BELOW_BOOKED",
                details={"booked_count": session.booked_count, "capacity": capacity},
            )
        db.execute(
            update(ClassSession)
            .where(ClassSession.id == session_id)
            .values(capacity=capacity)
            .execution_options(synchronize_session=False)
        )
        db.refresh(session)
        waitlist.fill_open_seats(db, session, memberships=memberships, outbox=outbox, now=now)
    outbox.dispatch(notifier)
    return session


def start_session(db: Session, session_id: int) -> ClassSession:
    with locked_session(db, session_id) as session:
        apply_session_transition(db, session, SessionEvent.START)
    return session


def complete_session(db: Session, session_id: int, *, now: datetime | None = None) -> ClassSession:
    """
    Close a class that has run.

    Members still BOOKED did not check in and become NO_SHOW; they keep their
    seat in booked_count. Whoever is still waitlisted is cancelled.
    """
    now = now or utcnow()
    with locked_session(db, session_id) as session:
        apply_session_transition(db, session, SessionEvent.COMPLETE)
        no_shows = db.execute(
            update(Booking)
            .where(Booking.session_id == session_id)
            .where(Booking.status == BookingStatus.BOOKED.value)
            .values(status=BookingStatus.NO_SHOW.value)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.execute(
            update(Booking)
            .where(Booking.session_id == session_id)
            .where(Booking.status == BookingStatus.WAITLISTED.value)
            .values(status=BookingStatus.CANCELLED.value, waitlist_position=None, cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        ledger.reset_counters(db, session_id, booked=session.booked_count, waitlisted=0)
        db.refresh(session)
        logger.info("session_completed", extra={"session_id": session_id, "no_shows": no_shows})
    return session


def cancel_session(
    db: Session,
    session_id: int,
    reason: str | None = None,
    *,
    memberships: MembershipGateway | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> ClassSession:
    """
    Cancel a class and every live booking on it in one transaction.

    Deducted credits are refunded since the studio cancelled. Members who
    already checked in keep their record. Each affected member gets one
    SESSION_CANCELLED notification once the transaction has committed.
    """
    memberships = memberships or membership_service.get_membership_gateway()
    now = now or utcnow()

    outbox = Outbox()
    with locked_session(db, session_id) as session:
        apply_session_transition(db, session, SessionEvent.CANCEL, cancellation_reason=reason)

        affected = db.execute(
            select(Booking.id, Booking.member_id, Booking.status, Booking.membership_id, Booking.credit_deducted)
            .where(Booking.session_id == session_id)
            .where(Booking.status.in_(ACTIVE_STATUSES))
        ).all()

        for row in affected:
            if row.status == BookingStatus.BOOKED.value and row.credit_deducted and row.membership_id is not None:
                memberships.refund_credit(db, row.membership_id)

        db.execute(
            update(Booking)
            .where(Booking.session_id == session_id)
            .where(Booking.status.in_(ACTIVE_STATUSES))
            .values(
                status=BookingStatus.CANCELLED.value,
                waitlist_position=None,
                cancelled_at=now,
                credit_deducted=False,
            )
            .execution_options(synchronize_session=False)
        )

        remaining = ledger.count_bookings(db, session_id)
        ledger.reset_counters(db, session_id, booked=remaining.booked, waitlisted=0)
        db.refresh(session)

        for row in affected:
            outbox.add(
                row.member_id,
                NotificationKind.SESSION_CANCELLED,
                booking_id=row.id,
                session_id=session_id,
                reason=reason,
            )
        logger.info(
            "session_cancelled",
            extra={"session_id": session_id, "affected_bookings": len(affected), "reason": reason},
        )
    outbox.dispatch(notifier)
    return session


def advance_due_sessions(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    """
    Move classes along the clock: start those whose start time has passed,
    then complete those that have ended. Each class is handled in its own
    locked transaction; one that changed underneath us is skipped.
    """
    now = now or utcnow()
    started = completed = 0

    due_to_start = db.scalars(
        select(ClassSession.id)
        .where(ClassSession.status == SessionStatus.SCHEDULED.value)
        .where(ClassSession.start_time <= now)
        .order_by(ClassSession.start_time)
    ).all()
    for session_id in due_to_start:
        try:
            start_session(db, session_id)
            started += 1
        except BookingDomainError as exc:
            logger.warning("session_start_skipped", extra={"session_id": session_id, "code": exc.code})

    due_to_complete = db.scalars(
        select(ClassSession.id)
        .where(ClassSession.status == SessionStatus.IN_PROGRESS.value)
        .where(ClassSession.end_time <= now)
        .order_by(ClassSession.end_time)
    ).all()
    for session_id in due_to_complete:
        try:
            complete_session(db, session_id, now=now)
            completed += 1
        except BookingDomainError as exc:
            logger.warning("session_completion_skipped", extra={"session_id": session_id, "code": exc.code})

    return {"started": started, "completed": completed}
