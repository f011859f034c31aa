"""
Capacity ledger: the per-session counters.

Each mutation is a single conditional UPDATE on the session row, so the
counters can never leave their bounds even if two writers slip past the
session lock. Callers run these inside the same transaction that writes the
matching booking row.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import StateConflictError
from studio_bookings.models.bookings import SEAT_HOLDING_STATUSES, Booking, BookingStatus
from studio_bookings.models.sessions import ClassSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionCounts:
    booked: int
    waitlisted: int


def _execute(db: Session, stmt) -> bool:
    res = db.execute(stmt.execution_options(synchronize_session=False))
    return res.rowcount == 1  # type: ignore


def reserve_seat(db: Session, session_id: int) -> bool:
    """Take one seat if one is free. False means the session is full."""
    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .where(ClassSession.booked_count < ClassSession.capacity)
        .values(booked_count=ClassSession.booked_count + 1)
    )
    return _execute(db, stmt)


def release_seat(db: Session, session_id: int) -> None:
    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .where(ClassSession.booked_count > 0)
        .values(booked_count=ClassSession.booked_count - 1)
    )
    if not _execute(db, stmt):
        raise StateConflictError("No booked seat to release", details={"session_id": session_id})


def join_waitlist(db: Session, session_id: int) -> None:
    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .values(waitlist_count=ClassSession.waitlist_count + 1)
    )
    if not _execute(db, stmt):
        raise StateConflictError("Session row missing", details={"session_id": session_id})


def leave_waitlist(db: Session, session_id: int) -> None:
    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .where(ClassSession.waitlist_count > 0)
        .values(waitlist_count=ClassSession.waitlist_count - 1)
    )
    if not _execute(db, stmt):
        raise StateConflictError("Waitlist is already empty", details={"session_id": session_id})


def promote_seat(db: Session, session_id: int) -> bool:
    """Move one unit from the waitlist counter to the booked counter."""
    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .where(ClassSession.booked_count < ClassSession.capacity)
        .where(ClassSession.waitlist_count > 0)
        .values(
            booked_count=ClassSession.booked_count + 1,
            waitlist_count=ClassSession.waitlist_count - 1,
        )
    )
    return _execute(db, stmt)


def reset_counters(db: Session, session_id: int, *, booked: int = 0, waitlisted: int = 0) -> None:
    stmt = (
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .values(booked_count=booked, waitlist_count=waitlisted)
    )
    _execute(db, stmt)


def count_bookings(db: Session, session_id: int) -> SessionCounts:
    """Recount the counters from booking rows."""
    booked, waitlisted = db.execute(
        select(
            func.coalesce(func.sum(case((Booking.status.in_(SEAT_HOLDING_STATUSES), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Booking.status == BookingStatus.WAITLISTED.value, 1), else_=0)), 0),
        ).where(Booking.session_id == session_id)
    ).one()
    return SessionCounts(booked=int(booked), waitlisted=int(waitlisted))


def reconcile_counters(db: Session, session_id: int) -> bool:
    """
    Rewrite the session counters from booking rows.

    Returns True if the stored counters had drifted. Caller holds the session
    lock and commits.
    """
    session = db.get(ClassSession, session_id, populate_existing=True)
    if session is None:
        return False
    counts = count_bookings(db, session_id)
    drifted = (session.booked_count, session.waitlist_count) != (counts.booked, counts.waitlisted)
    if drifted:
        logger.warning(
            "session_counter_drift",
            extra={
                "session_id": session_id,
                "stored_booked": session.booked_count,
                "stored_waitlisted": session.waitlist_count,
                "actual_booked": counts.booked,
                "actual_waitlisted": counts.waitlisted,
            },
        )
        reset_counters(db, session_id, booked=counts.booked, waitlisted=counts.waitlisted)
        db.refresh(session)
    return drifted
