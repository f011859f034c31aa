from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import BookingDomainError
from studio_bookings.database.db import get_db
from studio_bookings.models.sessions import SessionStatus
from studio_bookings.schemas.bookings import BookingOut
from studio_bookings.schemas.sessions import (
    CapacityUpdate,
    RosterEntryOut,
    SessionCancel,
    SessionCreate,
    SessionOut,
    SessionStatsOut,
    WaitlistEntryOut,
)
from studio_bookings.services import sessions as session_service
from studio_bookings.services.bookings import get_roster, get_session_stats, get_waitlist, promote_from_waitlist

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionOut)
def create_session(payload: SessionCreate, db: Session = Depends(get_db)):
    try:
        return session_service.create_session(db, **payload.model_dump())
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.get("", response_model=list[SessionOut])
def list_sessions(
    studio_id: int = Query(ge=1),
    start_from: datetime | None = None,
    start_to: datetime | None = None,
    status: SessionStatus | None = None,
    location: str | None = None,
    db: Session = Depends(get_db),
):
    return session_service.list_sessions(
        db,
        studio_id=studio_id,
        start_from=start_from,
        start_to=start_to,
        status=status,
        location=location,
    )


@router.get("/weekly", response_model=list[SessionOut])
def weekly_schedule(
    studio_id: int = Query(ge=1),
    week_start: datetime | None = None,
    location: str | None = None,
    db: Session = Depends(get_db),
):
    """Scheduled classes for one week, starting Sunday of the current week unless given."""
    return session_service.get_weekly_schedule(db, studio_id, week_start, location)


@router.get("/{session_id}", response_model=SessionOut)
def read_session(session_id: int, db: Session = Depends(get_db)):
    try:
        return session_service.get_session(db, session_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.get("/{session_id}/stats", response_model=SessionStatsOut)
def session_stats(session_id: int, db: Session = Depends(get_db)):
    stats = get_session_stats(db, session_id)
    if not stats:
        raise HTTPException(status_code=404, detail="Session not found")
    return stats


@router.patch("/{session_id}/capacity", response_model=SessionOut)
def change_capacity(session_id: int, payload: CapacityUpdate, db: Session = Depends(get_db)):
    try:
        return session_service.update_capacity(db, session_id, payload.capacity)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/{session_id}/start", response_model=SessionOut)
def start(session_id: int, db: Session = Depends(get_db)):
    try:
        return session_service.start_session(db, session_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/{session_id}/complete", response_model=SessionOut)
def complete(session_id: int, db: Session = Depends(get_db)):
    try:
        return session_service.complete_session(db, session_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/{session_id}/cancel", response_model=SessionOut)
def cancel(session_id: int, payload: SessionCancel | None = None, db: Session = Depends(get_db)):
    reason = payload.reason if payload else None
    try:
        return session_service.cancel_session(db, session_id, reason)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.get("/{session_id}/roster", response_model=list[RosterEntryOut])
def roster(session_id: int, db: Session = Depends(get_db)):
    try:
        return get_roster(db, session_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.get("/{session_id}/waitlist", response_model=list[WaitlistEntryOut])
def waitlist(session_id: int, db: Session = Depends(get_db)):
    try:
        return get_waitlist(db, session_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/{session_id}/waitlist/{booking_id}/promote", response_model=BookingOut)
def promote(session_id: int, booking_id: int, db: Session = Depends(get_db)):
    try:
        return promote_from_waitlist(db, session_id, booking_id)
    except BookingDomainError as e:
        raise e.to_http_exception()
