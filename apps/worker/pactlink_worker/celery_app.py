"""Celery application configuration."""

from celery import Celery

from pactlink_worker.settings import get_settings

settings = get_settings()
settings.validate_production_settings()

celery_app = Celery(
    "pactlink_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    result_expires=60 * 60,  # 1 hour
    beat_schedule={
        "sweep-expired-tokens": {
            "task": "pactlink_worker.tasks.sweep_expired_tokens",
            "schedule": settings.expiry_sweep_interval_hours * 60 * 60,
        },
    },
)

# Import tasks to register them with Celery
# This must be done after celery_app is created
from pactlink_worker import tasks  # noqa: F401, E402
