import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studio_bookings.database.db import Base

if TYPE_CHECKING:
    from studio_bookings.models.sessions import ClassSession


class BookingStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    WAITLISTED = "WAITLISTED"
    CHECKED_IN = "CHECKED_IN"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


class CheckInMethod(str, enum.Enum):
    QR_SCAN = "QR_SCAN"
    MANUAL = "MANUAL"


# Statuses that occupy a seat and therefore count towards booked_count.
SEAT_HOLDING_STATUSES = (
    BookingStatus.BOOKED.value,
    BookingStatus.CHECKED_IN.value,
    BookingStatus.NO_SHOW.value,
)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("member_id", "session_id", name="uq_booking_member_session"),
        Index("ix_booking_session_waitlist", "session_id", "waitlist_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("class_sessions.id"), nullable=False)
    member_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BookingStatus.BOOKED.value)
    waitlist_position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    membership_id: Mapped[int | None] = mapped_column(ForeignKey("memberships.id"), nullable=True)
    credit_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_method: Mapped[str | None] = mapped_column(String(16), nullable=True)

    booked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    promoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped["ClassSession"] = relationship(back_populates="bookings")
