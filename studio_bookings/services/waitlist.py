"""
Waitlist sequencing and promotion.

All functions here expect the caller to hold the session lock and an open
transaction (see ``locks.locked_session``). Order is strictly by
``waitlist_position``; positions are compacted back to 1..n after every
removal so that the numbers members see stay meaningful.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import NoCreditsRemainingError, SessionFullError, ValidationError
from studio_bookings.models.bookings import Booking, BookingStatus
from studio_bookings.models.sessions import ClassSession, SessionStatus
from studio_bookings.services import ledger
from studio_bookings.services.eligibility import EligibilityResult
from studio_bookings.services.memberships import MembershipGateway
from studio_bookings.services.notifications import NotificationKind, Outbox
from studio_bookings.services.state_machine import BookingEvent, apply_transition

logger = logging.getLogger(__name__)


def next_position(db: Session, session_id: int) -> int:
    current_max = db.scalar(
        select(func.max(Booking.waitlist_position)).where(
            Booking.session_id == session_id,
            Booking.status == BookingStatus.WAITLISTED.value,
        )
    )
    return int(current_max or 0) + 1


def list_waitlist(db: Session, session_id: int) -> list[Booking]:
    return list(
        db.scalars(
            select(Booking)
            .where(Booking.session_id == session_id)
            .where(Booking.status == BookingStatus.WAITLISTED.value)
            .order_by(Booking.waitlist_position, Booking.id)
            .execution_options(populate_existing=True)
        )
    )


def compact_positions(db: Session, session_id: int) -> int:
    """Renumber waitlisted entries 1..n. Returns how many rows moved."""
    moved = 0
    for index, booking in enumerate(list_waitlist(db, session_id), start=1):
        if booking.waitlist_position != index:
            db.execute(
                update(Booking)
                .where(Booking.id == booking.id)
                .values(waitlist_position=index)
                .execution_options(synchronize_session=False)
            )
            db.expire(booking, ["waitlist_position"])
            moved += 1
    return moved


def _promote(
    db: Session,
    session: ClassSession,
    booking: Booking,
    *,
    membership_id: int | None,
    credit_deducted: bool,
    outbox: Outbox,
    now: datetime,
) -> Booking:
    previous_position = booking.waitlist_position
    apply_transition(
        db,
        booking,
        BookingEvent.PROMOTE,
        waitlist_position=None,
        promoted_at=now,
        booked_at=now,
        membership_id=membership_id,
        credit_deducted=credit_deducted,
    )
    logger.info(
        "waitlist_promoted",
        extra={
            "session_id": session.id,
            "booking_id": booking.id,
            "member_id": booking.member_id,
            "position": previous_position,
        },
    )
    outbox.add(
        booking.member_id,
        NotificationKind.WAITLIST_PROMOTED,
        booking_id=booking.id,
        session_id=session.id,
    )
    return booking


def _drop_ineligible(db: Session, session: ClassSession, booking: Booking, reason: str | None,
                     outbox: Outbox, now: datetime) -> None:
    apply_transition(db, booking, BookingEvent.CANCEL, waitlist_position=None, cancelled_at=now)
    ledger.leave_waitlist(db, session.id)
    compact_positions(db, session.id)
    logger.info(
        "waitlist_entry_dropped",
        extra={"session_id": session.id, "booking_id": booking.id, "reason": reason},
    )
    outbox.add(
        booking.member_id,
        NotificationKind.WAITLIST_REMOVED,
        booking_id=booking.id,
        session_id=session.id,
        reason=reason,
    )


def promote_next(
    db: Session,
    session: ClassSession,
    *,
    memberships: MembershipGateway,
    outbox: Outbox,
    now: datetime,
) -> Booking | None:
    """
    Promote the head of the waitlist into a free seat.

    Heads whose membership no longer qualifies are cancelled and skipped.
    Returns None when there is no free seat or nobody is waiting.
    """
    if session.status != SessionStatus.SCHEDULED.value:
        return None

    while True:
        head = db.scalars(
            select(Booking)
            .where(Booking.session_id == session.id)
            .where(Booking.status == BookingStatus.WAITLISTED.value)
            .order_by(Booking.waitlist_position, Booking.id)
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()
        if head is None:
            return None

        check = memberships.has_booking_eligibility(db, head.member_id, session, now)
        if not check.eligible:
            _drop_ineligible(db, session, head, check.reason, outbox, now)
            continue

        credit_deducted = False
        if check.uses_credits and check.membership_id is not None:
            if not memberships.consume_credit(db, check.membership_id):
                _drop_ineligible(db, session, head, "NO_CREDITS_REMAINING", outbox, now)
                continue
            credit_deducted = True

        # Re-checks booked_count < capacity in the same statement.
        if not ledger.promote_seat(db, session.id):
            if credit_deducted:
                memberships.refund_credit(db, check.membership_id)
            return None

        promoted = _promote(
            db,
            session,
            head,
            membership_id=check.membership_id,
            credit_deducted=credit_deducted,
            outbox=outbox,
            now=now,
        )
        compact_positions(db, session.id)
        return promoted


def fill_open_seats(
    db: Session,
    session: ClassSession,
    *,
    memberships: MembershipGateway,
    outbox: Outbox,
    now: datetime,
) -> list[Booking]:
    promoted: list[Booking] = []
    while True:
        booking = promote_next(db, session, memberships=memberships, outbox=outbox, now=now)
        if booking is None:
            break
        promoted.append(booking)
    db.refresh(session)
    return promoted


def promote_specific(
    db: Session,
    session: ClassSession,
    booking: Booking,
    *,
    memberships: MembershipGateway,
    outbox: Outbox,
    now: datetime,
) -> Booking:
    """Staff override: promote ``booking`` out of FIFO order. Capacity still applies."""
    if booking.session_id != session.id or booking.status != BookingStatus.WAITLISTED.value:
        raise ValidationError(
            "Booking is not on this session's waitlist",
            code="NOT_ON_WAITLIST",
            details={"booking_id": booking.id, "session_id": session.id, "status": booking.status},
        )

    check = memberships.has_booking_eligibility(db, booking.member_id, session, now)
    if not check.eligible:
        EligibilityResult(eligible=False, reason=check.reason).raise_for_rejection()

    if not ledger.promote_seat(db, session.id):
        raise SessionFullError(
            "No free seat to promote into",
            details={"session_id": session.id, "capacity": session.capacity},
        )

    credit_deducted = False
    if check.uses_credits and check.membership_id is not None:
        if not memberships.consume_credit(db, check.membership_id):
            raise NoCreditsRemainingError("Member has no class credits remaining")
        credit_deducted = True

    promoted = _promote(
        db,
        session,
        booking,
        membership_id=check.membership_id,
        credit_deducted=credit_deducted,
        outbox=outbox,
        now=now,
    )
    compact_positions(db, session.id)
    db.refresh(session)
    return promoted
