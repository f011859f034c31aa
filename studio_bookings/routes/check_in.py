from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studio_bookings.core.exceptions import BookingDomainError
from studio_bookings.database.db import get_db
from studio_bookings.schemas.bookings import BookingOut
from studio_bookings.schemas.check_in import QRCheckInRequest, TokenOut, TokenRequest
from studio_bookings.services.check_in import check_in, check_in_with_qr, mark_no_show
from studio_bookings.services.qr_tokens import issue_check_in_token

router = APIRouter(prefix="/check-in", tags=["check-in"])


@router.post("/qr", response_model=BookingOut)
def scan_qr(payload: QRCheckInRequest, db: Session = Depends(get_db)):
    try:
        return check_in_with_qr(db, payload.token)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/tokens", response_model=TokenOut)
def issue_token(payload: TokenRequest):
    return {"token": issue_check_in_token(payload.member_id, payload.session_id)}


@router.post("/{booking_id}", response_model=BookingOut)
def manual_check_in(booking_id: int, db: Session = Depends(get_db)):
    try:
        return check_in(db, booking_id)
    except BookingDomainError as e:
        raise e.to_http_exception()


@router.post("/{booking_id}/no-show", response_model=BookingOut)
def no_show(booking_id: int, db: Session = Depends(get_db)):
    try:
        return mark_no_show(db, booking_id)
    except BookingDomainError as e:
        raise e.to_http_exception()
