"""Append-only audit trail models."""

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, JSON, String

from pactlink_api.db.base import Base


class AuditEvent(str, Enum):
    TOKEN_ISSUED = "token.issued"
    TOKEN_CLAIMED = "token.claimed"
    TOKEN_CLAIM_REJECTED = "token.claim_rejected"
    TOKEN_REVOKED = "token.revoked"
    TOKEN_EXPIRED = "token.expired"
    OTP_ISSUED = "otp.issued"
    OTP_VERIFIED = "otp.verified"
    OTP_MISMATCH = "otp.mismatch"
    OTP_EXPIRED = "otp.expired"
    OTP_ATTEMPTS_EXCEEDED = "otp.attempts_exceeded"
    SIGNATURE_REQUESTED = "signature.requested"
    SIGNATURE_OTP_PENDING = "signature.otp_pending"
    SIGNATURE_APPLIED = "signature.applied"
    SIGNATURE_RESET = "signature.reset"
    SIGNATURE_REVOKED = "signature.revoked"
    SIGNATURE_EXPIRED = "signature.expired"
    NOTIFICATION_FAILED = "notification.failed"


class AuditEntry(Base):
    """Immutable record of a sensitive state transition, hash-chained per subject."""

    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(String(255), nullable=True, index=True)  # NULL when a lookup matched nothing
    event_type = Column(String(100), nullable=False, index=True)
    actor_hint = Column(String(255), nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    detail = Column(JSON, nullable=False)
    correlation_id = Column(String(255), nullable=True, index=True)
    event_hash = Column(String(64), nullable=False, index=True)
    previous_event_hash = Column(String(64), nullable=True, index=True)  # NULL for first entry of a subject
