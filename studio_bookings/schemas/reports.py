from pydantic import BaseModel


class ReportOut(BaseModel):
    total_sessions: int
    total_capacity: int
    total_booked: int
    total_waitlisted: int
    total_checked_in: int
    total_no_show: int
    total_cancelled: int

    class Config:
        from_attributes = True
