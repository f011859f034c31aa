"""
Test the booking and session transition tables.
"""
import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import InvalidTransitionError, StateConflictError
from studio_bookings.database.db import SessionLocal
from studio_bookings.models import Booking, BookingStatus, SessionStatus
from studio_bookings.services.bookings import create_booking
from studio_bookings.services.state_machine import (
    BookingEvent,
    SessionEvent,
    apply_transition,
    session_transition,
    transition,
)


class TestBookingTransitions:
    @pytest.mark.parametrize(
        "current,event,expected",
        [
            (BookingStatus.BOOKED, BookingEvent.CHECK_IN, BookingStatus.CHECKED_IN),
            (BookingStatus.BOOKED, BookingEvent.MARK_NO_SHOW, BookingStatus.NO_SHOW),
            (BookingStatus.BOOKED, BookingEvent.CANCEL, BookingStatus.CANCELLED),
            (BookingStatus.WAITLISTED, BookingEvent.CANCEL, BookingStatus.CANCELLED),
            (BookingStatus.WAITLISTED, BookingEvent.PROMOTE, BookingStatus.BOOKED),
            (BookingStatus.CANCELLED, BookingEvent.REBOOK, BookingStatus.BOOKED),
            (BookingStatus.CANCELLED, BookingEvent.REJOIN_WAITLIST, BookingStatus.WAITLISTED),
        ],
    )
    def test_legal_moves(self, current, event, expected):
        assert transition(current, event) is expected

    @pytest.mark.parametrize(
        "current,event",
        [
            (BookingStatus.CHECKED_IN, BookingEvent.MARK_NO_SHOW),
            (BookingStatus.CHECKED_IN, BookingEvent.CANCEL),
            (BookingStatus.NO_SHOW, BookingEvent.CHECK_IN),
            (BookingStatus.WAITLISTED, BookingEvent.CHECK_IN),
            (BookingStatus.CANCELLED, BookingEvent.CHECK_IN),
            (BookingStatus.CANCELLED, BookingEvent.CANCEL),
            (BookingStatus.BOOKED, BookingEvent.PROMOTE),
        ],
    )
    def test_illegal_moves_raise(self, current, event):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(current, event)
        assert exc_info.value.retryable is True
        assert exc_info.value.details == {"status": current.value, "event": event.value}

    def test_accepts_raw_status_strings(self):
        assert transition("BOOKED", BookingEvent.CHECK_IN) is BookingStatus.CHECKED_IN


class TestSessionTransitions:
    def test_forward_path(self):
        assert session_transition(SessionStatus.SCHEDULED, SessionEvent.START) is SessionStatus.IN_PROGRESS
        assert session_transition(SessionStatus.IN_PROGRESS, SessionEvent.COMPLETE) is SessionStatus.COMPLETED

    def test_cancel_from_scheduled_or_in_progress(self):
        assert session_transition(SessionStatus.SCHEDULED, SessionEvent.CANCEL) is SessionStatus.CANCELLED
        assert session_transition(SessionStatus.IN_PROGRESS, SessionEvent.CANCEL) is SessionStatus.CANCELLED

    @pytest.mark.parametrize(
        "current,event",
        [
            (SessionStatus.SCHEDULED, SessionEvent.COMPLETE),
            (SessionStatus.COMPLETED, SessionEvent.CANCEL),
            (SessionStatus.CANCELLED, SessionEvent.START),
            (SessionStatus.IN_PROGRESS, SessionEvent.START),
        ],
    )
    def test_no_reverse_or_skipped_moves(self, current, event):
        with pytest.raises(InvalidTransitionError):
            session_transition(current, event)


class TestApplyTransition:
    def test_writes_status_and_values(self, db_session: Session, make_session, grant_membership):
        session = make_session(capacity=2)
        grant_membership(1)
        booking = create_booking(db_session, session_id=session.id, member_id=1)

        apply_transition(db_session, booking, BookingEvent.MARK_NO_SHOW)
        db_session.commit()

        assert booking.status == BookingStatus.NO_SHOW.value

    def test_concurrent_writer_turns_into_conflict(self, db_session: Session, make_session, grant_membership):
        session = make_session(capacity=2)
        grant_membership(1)
        booking = create_booking(db_session, session_id=session.id, member_id=1)
        assert booking.status == BookingStatus.BOOKED.value

        other = SessionLocal()
        try:
            other.execute(
                update(Booking).where(Booking.id == booking.id).values(status=BookingStatus.CANCELLED.value)
            )
            other.commit()
        finally:
            other.close()

        with pytest.raises(StateConflictError):
            apply_transition(db_session, booking, BookingEvent.CHECK_IN)
        db_session.rollback()
