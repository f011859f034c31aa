import logging
from collections.abc import Iterator
from contextlib import contextmanager

import redis
from sqlalchemy.orm import Session

from studio_bookings.core.config import get_settings
from studio_bookings.core.exceptions import SessionBusyError, SessionNotFoundError
from studio_bookings.core.redis_config import get_redis_url
from studio_bookings.models.sessions import ClassSession

logger = logging.getLogger(__name__)


def get_redis_client():
    """Get Redis client for locking."""
    return redis.from_url(get_redis_url(), decode_responses=True)


def _lock_key(session_id: int) -> str:
    return f"session_lock:{session_id}"


@contextmanager
def session_lock(session_id: int) -> Iterator[None]:
    """
    Serialize capacity-changing work on one class session.

    Only one request per session can hold the lock; other sessions are not
    affected. Raises SessionBusyError if the lock cannot be taken in time.
    """
    settings = get_settings()
    redis_client = get_redis_client()
    lock = redis_client.lock(
        _lock_key(session_id),
        timeout=settings.session_lock_timeout,
        blocking_timeout=settings.session_lock_blocking_timeout,
    )

    try:
        acquired = lock.acquire(blocking=True)
    except redis.exceptions.LockError:  # type: ignore
        acquired = False
    if not acquired:
        logger.warning("session_lock_contended", extra={"session_id": session_id})
        raise SessionBusyError(
            "Session is busy, please try again.",
            details={"session_id": session_id},
        )

    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError as exc:  # type: ignore
            # Lock expired before release; the transaction has already finished.
            logger.warning(
                "session_lock_release_failed",
                extra={"session_id": session_id, "error": str(exc)},
            )


@contextmanager
def locked_session(db: Session, session_id: int) -> Iterator[ClassSession]:
    """
    Hold the session lock and one transaction for the duration of the block.

    Yields a freshly loaded ClassSession row. Commits on success and rolls
    back on any exception, so counters and booking rows change together or
    not at all.
    """
    with session_lock(session_id):
        # Anything read before the lock may be stale.
        db.expire_all()
        try:
            session = db.get(ClassSession, session_id, with_for_update=True, populate_existing=True)
            if session is None:
                raise SessionNotFoundError(session_id)
            yield session
            db.commit()
        except Exception:
            db.rollback()
            raise
