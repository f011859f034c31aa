import logging

from studio_bookings.core.celery_config import celery_app
from studio_bookings.core.exceptions import BookingDomainError
from studio_bookings.database.db import SessionLocal
from studio_bookings.services.sessions import advance_due_sessions, complete_session

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def send_notification_task(self, member_id: int, kind: str, payload: dict):
    """Deliver a member notification (push/email gateway hand-off)."""
    logger.info(
        "notification_sent",
        extra={"member_id": member_id, "kind": kind, "payload": payload, "task_id": self.request.id},
    )
    return {"member_id": member_id, "kind": kind}


@celery_app.task(bind=True)
def complete_session_task(self, session_id: int):
    db = SessionLocal()
    try:
        session = complete_session(db, session_id)
        return session.status
    except BookingDomainError as exc:
        logger.warning(
            "session_completion_skipped",
            extra={"session_id": session_id, "code": exc.code, "error": exc.message},
        )
        return None
    finally:
        db.close()


@celery_app.task(bind=True)
def advance_sessions_task(self):
    """Periodic sweep, scheduled by celery beat."""
    db = SessionLocal()
    try:
        return advance_due_sessions(db)
    finally:
        db.close()
