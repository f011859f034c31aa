from datetime import datetime

from pydantic import BaseModel, Field


class BookRequest(BaseModel):
    member_id: int = Field(ge=1)
    session_id: int = Field(ge=1)


class CancelRequest(BaseModel):
    member_id: int | None = Field(default=None, ge=1)


class BookingOut(BaseModel):
    id: int
    session_id: int
    member_id: int
    status: str
    waitlist_position: int | None = None
    checked_in_at: datetime | None = None
    check_in_method: str | None = None
    booked_at: datetime | None = None
    promoted_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class EligibilityOut(BaseModel):
    eligible: bool
    reason: str | None = None
