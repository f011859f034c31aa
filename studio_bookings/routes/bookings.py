from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import BookingDomainError
from studio_bookings.database.db import get_db
from studio_bookings.schemas.bookings import BookingOut, BookRequest, CancelRequest, EligibilityOut
from studio_bookings.services.bookings import cancel_booking, create_booking, get_booking, get_member_bookings
from studio_bookings.services.eligibility import check_eligibility

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingOut)
def book_class(payload: BookRequest, db: Session = Depends(get_db)):
    try:
        return create_booking(db, session_id=payload.session_id, member_id=payload.member_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.get("/eligibility", response_model=EligibilityOut)
def eligibility(
    member_id: int = Query(ge=1),
    session_id: int = Query(ge=1),
    db: Session = Depends(get_db),
):
    try:
        result = check_eligibility(db, member_id=member_id, session_id=session_id)
    except BookingDomainError as e:
        raise e.to_http_exception()
    return {"eligible": result.eligible, "reason": result.reason}


@router.get("", response_model=list[BookingOut])
def member_bookings(
    member_id: int = Query(ge=1),
    upcoming: bool = True,
    db: Session = Depends(get_db),
):
    return get_member_bookings(db, member_id, upcoming=upcoming)


@router.get("/{booking_id}", response_model=BookingOut)
def read_booking(booking_id: int, db: Session = Depends(get_db)):
    try:
        return get_booking(db, booking_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel(booking_id: int, payload: CancelRequest | None = None, db: Session = Depends(get_db)):
    member_id = payload.member_id if payload else None
    try:
        return cancel_booking(db, booking_id, member_id=member_id)
    except BookingDomainError as e:
        raise e.to_http_exception()
