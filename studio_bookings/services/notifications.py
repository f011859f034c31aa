"""
Notification dispatch.

Services never talk to the notifier while they hold a session lock. They
collect messages in an ``Outbox`` and call ``dispatch()`` after the
transaction has committed and the lock is released. Delivery is best-effort:
a failing notifier is logged and the booking stays as committed.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    WAITLIST_PROMOTED = "WAITLIST_PROMOTED"
    SESSION_CANCELLED = "SESSION_CANCELLED"
    CHECK_IN_CONFIRMED = "CHECK_IN_CONFIRMED"
    WAITLIST_REMOVED = "WAITLIST_REMOVED"


class Notifier(Protocol):
    def notify(self, member_id: int, kind: NotificationKind, payload: dict[str, Any]) -> None: ...


class CeleryNotifier:
    """Hands each notification to a Celery worker."""

    def notify(self, member_id: int, kind: NotificationKind, payload: dict[str, Any]) -> None:
        from studio_bookings.tasks import send_notification_task

        send_notification_task.delay(member_id, kind.value, payload)


def get_notifier() -> Notifier:
    return CeleryNotifier()


@dataclass
class PendingNotification:
    member_id: int
    kind: NotificationKind
    payload: dict[str, Any]


@dataclass
class Outbox:
    messages: list[PendingNotification] = field(default_factory=list)

    def add(self, member_id: int, kind: NotificationKind, **payload: Any) -> None:
        self.messages.append(PendingNotification(member_id, kind, payload))

    def dispatch(self, notifier: Notifier | None = None) -> int:
        """Send everything queued. Returns how many were handed over."""
        if not self.messages:
            return 0
        notifier = notifier or get_notifier()
        sent = 0
        for message in self.messages:
            try:
                notifier.notify(message.member_id, message.kind, message.payload)
                sent += 1
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    extra={
                        "member_id": message.member_id,
                        "kind": message.kind.value,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
        self.messages.clear()
        return sent
