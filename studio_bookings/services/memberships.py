from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from studio_bookings.models.memberships import Membership, MembershipKind, MembershipStatus
from studio_bookings.models.sessions import ClassSession


@dataclass(frozen=True)
class MembershipCheck:
    eligible: bool
    reason: str | None = None
    membership_id: int | None = None
    uses_credits: bool = False


class MembershipGateway(Protocol):
    def has_booking_eligibility(
        self, db: Session, member_id: int, session: ClassSession, now: datetime
    ) -> MembershipCheck: ...

    def consume_credit(self, db: Session, membership_id: int) -> bool: ...

    def refund_credit(self, db: Session, membership_id: int) -> None: ...


class SqlMembershipGateway:
    """Reads memberships from the shared database."""

    def has_booking_eligibility(
        self, db: Session, member_id: int, session: ClassSession, now: datetime
    ) -> MembershipCheck:
        memberships = db.scalars(
            select(Membership)
            .where(Membership.member_id == member_id)
            .where(Membership.status == MembershipStatus.ACTIVE.value)
            .where(or_(Membership.valid_until.is_(None), Membership.valid_until > now))
            .order_by(Membership.valid_until.is_(None), Membership.valid_until, Membership.id)
            .execution_options(populate_existing=True)
        ).all()
        if not memberships:
            return MembershipCheck(eligible=False, reason="NO_VALID_MEMBERSHIP")

        for membership in memberships:
            if membership.kind == MembershipKind.UNLIMITED.value:
                return MembershipCheck(eligible=True, membership_id=membership.id)

        # Class packs: spend the one that expires first.
        for membership in memberships:
            if membership.uses_credits and (membership.credits_remaining or 0) > 0:
                return MembershipCheck(eligible=True, membership_id=membership.id, uses_credits=True)

        return MembershipCheck(eligible=False, reason="NO_CREDITS_REMAINING")

    def consume_credit(self, db: Session, membership_id: int) -> bool:
        stmt = (
            update(Membership)
            .where(Membership.id == membership_id)
            .where(Membership.credits_remaining > 0)
            .values(
                credits_remaining=Membership.credits_remaining - 1,
                credits_used=Membership.credits_used + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1  # type: ignore

    def refund_credit(self, db: Session, membership_id: int) -> None:
        stmt = (
            update(Membership)
            .where(Membership.id == membership_id)
            .where(Membership.credits_used > 0)
            .values(
                credits_remaining=func.coalesce(Membership.credits_remaining, 0) + 1,
                credits_used=Membership.credits_used - 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.execute(stmt)


def get_membership_gateway() -> MembershipGateway:
    return SqlMembershipGateway()
