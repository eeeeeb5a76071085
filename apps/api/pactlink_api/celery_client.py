"""Producer-side Celery client used to hand work to the worker.

The API never imports worker code; tasks are addressed by name.
"""

import logging
from typing import Optional

from celery import Celery

from pactlink_api.settings import get_settings

logger = logging.getLogger(__name__)

SEND_NOTIFICATION_TASK = "pactlink_worker.tasks.send_notification"
SIGNATURE_COMPLETED_TASK = "pactlink_worker.tasks.publish_signature_completed"

# Bounded broker retries so a request never hangs on an unreachable Redis.
PUBLISH_RETRY_POLICY = {
    "max_retries": 2,
    "interval_start": 0,
    "interval_step": 0.2,
    "interval_max": 0.5,
}

_celery_app: Optional[Celery] = None


def get_celery_app() -> Celery:
    """Get or create the producer Celery app (JSON, UTC, Redis broker, no results)."""
    global _celery_app

    if _celery_app is None:
        settings = get_settings()

        _celery_app = Celery("pactlink_api")
        _celery_app.conf.update(
            broker_url=settings.redis_url,
            task_serializer="json",
            accept_content=["json"],
            timezone="UTC",
            enable_utc=True,
            task_ignore_result=True,
        )

        logger.info("Initialized Celery producer")

    return _celery_app


def enqueue(task_name: str, *args, expires: Optional[float] = None) -> None:
    """Publish a task by name. Broker errors propagate to the caller.

    A message still queued ``expires`` seconds from now is discarded by the
    worker instead of run.
    """
    get_celery_app().send_task(
        task_name,
        args=list(args),
        expires=expires,
        ignore_result=True,
        retry=True,
        retry_policy=PUBLISH_RETRY_POLICY,
    )
