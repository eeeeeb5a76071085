"""Notification dispatcher boundary.

Email/SMS rendering and delivery live outside this service. The core only
hands a recipient, a purpose and a payload to a dispatcher; the Celery
implementation enqueues delivery on the worker.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from pactlink_api.celery_client import SEND_NOTIFICATION_TASK, enqueue
from pactlink_api.models import AuditEvent
from pactlink_api.providers import utcnow
from pactlink_api.utils.metrics import notification_failures

if TYPE_CHECKING:
    from pactlink_api.audit.log import AuditLog

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Fire-and-forget delivery of links and codes to external parties."""

    @abstractmethod
    def send(self, recipient_hint: Optional[str], purpose: str, payload: dict) -> None:
        """Hand off a notification. Raises if the hand-off itself failed."""
        pass


class CeleryNotificationDispatcher(NotificationDispatcher):
    """Enqueue delivery on the worker's send_notification task.

    The payload sits in the broker until the worker picks it up. A payload
    with an ``expires_at`` expires in the queue together with the link or code
    it carries.
    """

    def send(self, recipient_hint: Optional[str], purpose: str, payload: dict) -> None:
        enqueue(SEND_NOTIFICATION_TASK, recipient_hint, purpose, payload, expires=_seconds_left(payload))
        logger.info(f"Notification enqueued for purpose {purpose}")


def _seconds_left(payload: dict) -> Optional[float]:
    expires_at = payload.get("expires_at")
    if not expires_at:
        return None
    return max((datetime.fromisoformat(expires_at) - utcnow()).total_seconds(), 0.0)


def dispatch_with_audit(
    dispatcher: Optional[NotificationDispatcher],
    audit: "AuditLog",
    subject_id: Optional[str],
    recipient_hint: Optional[str],
    purpose: str,
    payload: dict,
) -> bool:
    """Send a notification; a failed hand-off is audited, never raised.

    The caller's state change is already committed when this runs, so the
    failure record is committed on its own.
    """
    if dispatcher is None or not recipient_hint:
        return False

    try:
        dispatcher.send(recipient_hint, purpose, payload)
        return True
    except Exception as e:
        logger.warning(
            f"Notification dispatch failed: {e.__class__.__name__}",
            extra={"subject_id": subject_id, "purpose": purpose},
        )
        notification_failures.labels(purpose=purpose).inc()
        audit.record(
            subject_id,
            AuditEvent.NOTIFICATION_FAILED,
            actor_hint="system",
            detail={"purpose": purpose, "error": e.__class__.__name__, "token_id": payload.get("token_id")},
        )
        audit.db.commit()
        return False
