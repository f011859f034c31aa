from datetime import datetime

from pydantic import BaseModel, Field, model_validator


# ---------- Session ----------
class SessionCreate(BaseModel):
    class_type: str = Field(min_length=1, max_length=120)
    location: str = Field(min_length=1, max_length=120)
    instructor_id: int | None = Field(default=None, ge=1)
    studio_id: int = Field(default=1, ge=1)
    start_time: datetime
    end_time: datetime
    capacity: int = Field(ge=0)
    waitlist_enabled: bool | None = None

    @model_validator(mode="after")
    def check_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SessionOut(BaseModel):
    id: int
    studio_id: int
    class_type: str
    location: str
    instructor_id: int | None
    start_time: datetime
    end_time: datetime
    capacity: int
    booked_count: int
    waitlist_count: int
    waitlist_enabled: bool
    status: str
    cancellation_reason: str | None = None

    class Config:
        from_attributes = True


class CapacityUpdate(BaseModel):
    capacity: int = Field(ge=0)


class SessionCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class SessionStatsOut(BaseModel):
    session_id: int
    status: str
    capacity: int
    booked_count: int
    waitlist_count: int
    checked_in_count: int
    no_show_count: int
    cancelled_count: int


class RosterEntryOut(BaseModel):
    booking_id: int = Field(validation_alias="id")
    member_id: int
    status: str
    booked_at: datetime | None = None
    checked_in_at: datetime | None = None
    check_in_method: str | None = None

    class Config:
        from_attributes = True


class WaitlistEntryOut(BaseModel):
    booking_id: int = Field(validation_alias="id")
    member_id: int
    position: int = Field(validation_alias="waitlist_position")
    joined_at: datetime | None = Field(default=None, validation_alias="booked_at")

    class Config:
        from_attributes = True
