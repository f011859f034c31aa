from celery import Celery

from studio_bookings.core.config import get_settings
from studio_bookings.core.redis_config import get_redis_url


def make_celery(app_name: str = "studio_bookings") -> Celery:
    redis_url = get_redis_url()
    celery = Celery(app_name, broker=redis_url, backend=redis_url, include=["studio_bookings.tasks"])
    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        result_persistent=False,
        task_track_started=True,
        timezone="UTC",
        beat_schedule={
            "advance-due-sessions": {
                "task": "studio_bookings.tasks.advance_sessions_task",
                "schedule": float(get_settings().session_sweep_interval_seconds),
            },
        },
    )
    return celery


celery_app = make_celery()
