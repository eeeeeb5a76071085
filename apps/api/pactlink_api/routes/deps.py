"""Service wiring for route handlers.

Each dependency can be overridden through ``app.dependency_overrides``,
which is how tests pin the clock, the RNG and the collaborators.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from pactlink_api.audit.log import AuditLog
from pactlink_api.db.session import get_db
from pactlink_api.notifications.dispatcher import CeleryNotificationDispatcher, NotificationDispatcher
from pactlink_api.otp.service import OTPService
from pactlink_api.providers import Clock, RandomSource, SystemClock
from pactlink_api.settings import Settings, get_settings
from pactlink_api.signatures.events import CeleryEventPublisher, EventPublisher
from pactlink_api.signatures.workflow import SignatureWorkflow
from pactlink_api.tokens.store import TokenStore


def get_clock() -> Clock:
    return SystemClock()


def get_random_source(settings: Settings = Depends(get_settings)) -> RandomSource:
    return RandomSource(settings.token_secret_bytes)


def get_dispatcher() -> Optional[NotificationDispatcher]:
    return CeleryNotificationDispatcher()


def get_event_publisher() -> Optional[EventPublisher]:
    return CeleryEventPublisher()


def get_audit_log(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AuditLog:
    return AuditLog(db, clock, correlation_id=getattr(request.state, "correlation_id", None))


def get_token_store(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    random_source: RandomSource = Depends(get_random_source),
    dispatcher: Optional[NotificationDispatcher] = Depends(get_dispatcher),
    audit: AuditLog = Depends(get_audit_log),
    settings: Settings = Depends(get_settings),
) -> TokenStore:
    return TokenStore(db, clock, random_source, dispatcher, audit, settings)


def get_otp_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    random_source: RandomSource = Depends(get_random_source),
    audit: AuditLog = Depends(get_audit_log),
    settings: Settings = Depends(get_settings),
) -> OTPService:
    return OTPService(db, clock, random_source, audit, settings)


def get_workflow(
    db: Session = Depends(get_db),
    token_store: TokenStore = Depends(get_token_store),
    otp_service: OTPService = Depends(get_otp_service),
    audit: AuditLog = Depends(get_audit_log),
    clock: Clock = Depends(get_clock),
    dispatcher: Optional[NotificationDispatcher] = Depends(get_dispatcher),
    publisher: Optional[EventPublisher] = Depends(get_event_publisher),
) -> SignatureWorkflow:
    return SignatureWorkflow(db, token_store, otp_service, audit, clock, dispatcher, publisher)
