from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studio_bookings.database.db import get_db
from studio_bookings.schemas.reports import ReportOut
from studio_bookings.services.bookings import get_attendance_report

router = APIRouter(prefix="/report", tags=["reports"])


@router.get("", response_model=ReportOut)
def overall_report(db: Session = Depends(get_db)):
    """Attendance totals across all sessions. Per-class numbers live at /sessions/{id}/stats."""
    return get_attendance_report(db)
