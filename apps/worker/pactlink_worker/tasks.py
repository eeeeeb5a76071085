"""Celery tasks for async operations."""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from pactlink_worker.celery_app import celery_app
from pactlink_worker.db import session_scope
from pactlink_worker.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class DeliveryError(Exception):
    """Receiver answered with a non-2xx status."""


def compute_signature(body: bytes, secret: str, timestamp: str) -> str:
    """Compute HMAC signature for a request body with replay protection."""
    # Sign: timestamp + "." + body
    message = f"{timestamp}.{body.decode()}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def post_signed(url: str, event_type: str, body: dict) -> int:
    """POST a JSON body signed with the notification secret."""
    body_bytes = json.dumps(body, sort_keys=True).encode()
    timestamp = str(int(time.time()))

    headers = {
        "Content-Type": "application/json",
        "X-PactLink-Event": event_type,
        "X-PactLink-Timestamp": timestamp,
    }
    if settings.notification_signing_secret:
        signature = compute_signature(body_bytes, settings.notification_signing_secret, timestamp)
        headers["X-PactLink-Signature"] = f"sha256={signature}"

    with httpx.Client(timeout=settings.notification_timeout_seconds) as client:
        response = client.post(url, content=body_bytes, headers=headers)

    if not 200 <= response.status_code < 300:
        raise DeliveryError(f"{event_type} delivery failed with status {response.status_code}")
    return response.status_code


@celery_app.task(
    bind=True,
    max_retries=settings.notification_max_retries,
    autoretry_for=(httpx.HTTPError, DeliveryError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def send_notification(self, recipient_hint: Optional[str], purpose: str, payload: dict):
    """Hand a link or code to the external email/SMS service.

    The payload travels in the task arguments, so the broker holds it until
    this task runs or the message expires. The broker is part of the
    delivery path and gets the same protection as the notification service.
    """
    # Payloads may carry a link secret or an OTP code: never log them
    log_extra = {
        "task": "send_notification",
        "purpose": purpose,
        "token_id": payload.get("token_id"),
        "attempt": self.request.retries + 1,
    }

    if not settings.notification_webhook_url:
        logger.warning("No notification webhook configured, notification dropped", extra=log_extra)
        return {"delivered": False}

    status_code = post_signed(
        settings.notification_webhook_url,
        f"notification.{purpose}",
        {"recipient": recipient_hint, "purpose": purpose, "payload": payload},
    )
    logger.info("Notification delivered", extra=log_extra)
    return {"delivered": True, "status": status_code}


@celery_app.task(
    bind=True,
    max_retries=settings.notification_max_retries,
    autoretry_for=(httpx.HTTPError, DeliveryError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def publish_signature_completed(self, event: dict):
    """Fan a SignatureCompleted event out to the downstream subscriber."""
    log_extra = {
        "task": "publish_signature_completed",
        "deal_id": event.get("deal_id"),
        "role": event.get("role"),
        "fully_executed": event.get("fully_executed"),
    }

    if not settings.events_webhook_url:
        logger.info("SignatureCompleted received, no subscriber configured", extra=log_extra)
        return {"delivered": False}

    status_code = post_signed(settings.events_webhook_url, "signature.completed", event)
    logger.info("SignatureCompleted delivered", extra=log_extra)
    return {"delivered": True, "status": status_code}


@celery_app.task(bind=True)
def sweep_expired_tokens(self):
    """Periodic expiry sweep (scheduled by beat)."""
    from pactlink_api.tokens.sweep import ExpirySweeper

    try:
        with session_scope() as db:
            result = ExpirySweeper(db).run()
    except SQLAlchemyError as e:
        logger.error(f"Expiry sweep failed: {e.__class__.__name__}", exc_info=True, extra={"task": "sweep_expired_tokens"})
        raise

    return result.to_dict()
