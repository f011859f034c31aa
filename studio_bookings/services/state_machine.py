"""
Booking and session state machines.

Legal moves live in two tables below. ``transition()`` is the only place that
decides whether a move is allowed; ``apply_transition()`` then writes it with a
conditional UPDATE on the expected current status, so a concurrent writer that
got there first turns into a ``StateConflictError`` instead of a lost update.
"""

import enum
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import InvalidTransitionError, StateConflictError
from studio_bookings.models.bookings import Booking, BookingStatus
from studio_bookings.models.sessions import ClassSession, SessionStatus

logger = logging.getLogger(__name__)


class BookingEvent(str, enum.Enum):
    CHECK_IN = "CHECK_IN"
    MARK_NO_SHOW = "MARK_NO_SHOW"
    CANCEL = "CANCEL"
    PROMOTE = "PROMOTE"
    # A member re-books a session they cancelled earlier; the row is reopened
    # because (member, session) is unique.
    REBOOK = "REBOOK"
    REJOIN_WAITLIST = "REJOIN_WAITLIST"


class SessionEvent(str, enum.Enum):
    START = "START"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"


BOOKING_TRANSITIONS: dict[tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (BookingStatus.BOOKED, BookingEvent.CHECK_IN): BookingStatus.CHECKED_IN,
    (BookingStatus.BOOKED, BookingEvent.MARK_NO_SHOW): BookingStatus.NO_SHOW,
    (BookingStatus.BOOKED, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.WAITLISTED, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.WAITLISTED, BookingEvent.PROMOTE): BookingStatus.BOOKED,
    (BookingStatus.CANCELLED, BookingEvent.REBOOK): BookingStatus.BOOKED,
    (BookingStatus.CANCELLED, BookingEvent.REJOIN_WAITLIST): BookingStatus.WAITLISTED,
}

SESSION_TRANSITIONS: dict[tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (SessionStatus.SCHEDULED, SessionEvent.START): SessionStatus.IN_PROGRESS,
    (SessionStatus.IN_PROGRESS, SessionEvent.COMPLETE): SessionStatus.COMPLETED,
    (SessionStatus.SCHEDULED, SessionEvent.CANCEL): SessionStatus.CANCELLED,
    (SessionStatus.IN_PROGRESS, SessionEvent.CANCEL): SessionStatus.CANCELLED,
}


def transition(current: BookingStatus | str, event: BookingEvent) -> BookingStatus:
    current = BookingStatus(current)
    try:
        return BOOKING_TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {event.value.lower().replace('_', ' ')} a booking that is {current.value}",
            details={"status": current.value, "event": event.value},
        ) from None


def session_transition(current: SessionStatus | str, event: SessionEvent) -> SessionStatus:
    current = SessionStatus(current)
    try:
        return SESSION_TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {event.value.lower()} a session that is {current.value}",
            details={"status": current.value, "event": event.value},
        ) from None


def apply_transition(db: Session, booking: Booking, event: BookingEvent, **values: Any) -> Booking:
    """Move ``booking`` along ``event`` and persist it atomically with ``values``."""
    current = BookingStatus(booking.status)
    target = transition(current, event)

    stmt = (
        update(Booking)
        .where(Booking.id == booking.id)
        .where(Booking.status == current.value)
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    if res.rowcount != 1:  # type: ignore
        raise StateConflictError(
            "Booking changed while the request was in flight",
            details={"booking_id": booking.id, "expected_status": current.value},
        )

    db.refresh(booking)
    logger.debug("booking %s: %s -[%s]-> %s", booking.id, current.value, event.value, target.value)
    return booking


def apply_session_transition(db: Session, session: ClassSession, event: SessionEvent, **values: Any) -> ClassSession:
    current = SessionStatus(session.status)
    target = session_transition(current, event)

    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session.id)
        .where(ClassSession.status == current.value)
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    if res.rowcount != 1:  # type: ignore
        raise StateConflictError(
            "Session changed while the request was in flight",
            details={"session_id": session.id, "expected_status": current.value},
        )

    db.refresh(session)
    logger.info("session %s: %s -[%s]-> %s", session.id, current.value, event.value, target.value)
    return session
