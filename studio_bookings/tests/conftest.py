import os
import tempfile
import threading
from datetime import timedelta

import fakeredis
import pytest

# Point the app at a throwaway SQLite file before anything reads settings.
_DB_DIR = tempfile.mkdtemp(prefix="studio_bookings_")
os.environ["STUDIO_DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from studio_bookings.core.timeutil import utcnow  # noqa: E402
from studio_bookings.database.db import Base, SessionLocal, engine  # noqa: E402
from studio_bookings.main import app  # noqa: E402
from studio_bookings.models import (  # noqa: E402
    Booking,
    BookingStatus,
    ClassSession,
    Membership,
    MembershipKind,
    MembershipStatus,
)
from studio_bookings.services.sessions import create_session  # noqa: E402


class RecordingNotifier:
    """Collects notifications instead of queueing Celery tasks."""

    def __init__(self):
        self.sent = []
        self._lock = threading.Lock()

    def notify(self, member_id, kind, payload):
        with self._lock:
            self.sent.append((member_id, kind, payload))

    def kinds(self):
        return [kind for _, kind, _ in self.sent]

    def for_member(self, member_id):
        return [kind for member, kind, _ in self.sent if member == member_id]


def assert_counters_match(db: Session, session_id: int) -> None:
    """Stored counters must equal the booking rows behind them."""
    session = db.get(ClassSession, session_id, populate_existing=True)
    booked = db.scalar(
        select(func.count(Booking.id)).where(
            Booking.session_id == session_id,
            Booking.status.in_(
                [BookingStatus.BOOKED.value, BookingStatus.CHECKED_IN.value, BookingStatus.NO_SHOW.value]
            ),
        )
    )
    waitlisted = db.scalar(
        select(func.count(Booking.id)).where(
            Booking.session_id == session_id,
            Booking.status == BookingStatus.WAITLISTED.value,
        )
    )
    assert session.booked_count == booked
    assert session.waitlist_count == waitlisted
    assert session.booked_count <= session.capacity


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Set up and tear down the database for the test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(fake_server):
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture(autouse=True)
def redis_client(monkeypatch: pytest.MonkeyPatch, fake_server):
    """Route the session locks to an in-process Redis."""

    def _client():
        return fakeredis.FakeRedis(server=fake_server, decode_responses=True)

    monkeypatch.setattr("studio_bookings.services.locks.get_redis_client", _client)
    return _client()


@pytest.fixture(autouse=True)
def notifier(monkeypatch: pytest.MonkeyPatch):
    recorder = RecordingNotifier()
    monkeypatch.setattr("studio_bookings.services.notifications.get_notifier", lambda: recorder)
    return recorder


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_session(db_session: Session):
    """Factory for a SCHEDULED class starting shortly."""

    def _make(capacity=10, *, starts_in=timedelta(minutes=10), duration=timedelta(hours=1), **kwargs):
        start = utcnow() + starts_in
        kwargs.setdefault("class_type", "Vinyasa Flow")
        kwargs.setdefault("location", "Studio A")
        return create_session(
            db_session,
            start_time=start,
            end_time=start + duration,
            capacity=capacity,
            **kwargs,
        )

    return _make


@pytest.fixture
def grant_membership(db_session: Session):
    """Factory for a membership row. Unlimited and valid for 30 days by default."""

    def _grant(
        member_id,
        *,
        kind=MembershipKind.UNLIMITED,
        credits=None,
        status=MembershipStatus.ACTIVE,
        valid_for=timedelta(days=30),
    ):
        membership = Membership(
            member_id=member_id,
            kind=kind.value,
            status=status.value,
            credits_remaining=credits,
            credits_used=0,
            valid_until=utcnow() + valid_for if valid_for is not None else None,
        )
        db_session.add(membership)
        db_session.commit()
        db_session.refresh(membership)
        return membership

    return _grant
