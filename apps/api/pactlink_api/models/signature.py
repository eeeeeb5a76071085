"""Contract signature model."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from pactlink_api.db.base import Base
from pactlink_api.providers import utcnow


class SignerRole(str, Enum):
    CREATOR = "creator"
    BRAND = "brand"


class SignatureStatus(str, Enum):
    """Signing state of one (deal, role) pair."""

    NOT_READY = "not_ready"
    AWAITING_SIGNATURE = "awaiting_signature"
    OTP_PENDING = "otp_pending"
    SIGNED = "signed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ContractSignature(Base):
    """One signature slot per (deal, signer role)."""

    __tablename__ = "contract_signatures"
    __table_args__ = (UniqueConstraint("deal_id", "signer_role", name="uq_contract_signatures_deal_role"),)

    id = Column(Integer, primary_key=True, index=True)
    deal_id = Column(String(255), nullable=False, index=True)
    signer_role = Column(String(20), nullable=False)
    signer_name = Column(String(255), nullable=True)
    signer_email = Column(String(255), nullable=True)
    status = Column(String(50), default=SignatureStatus.NOT_READY.value, nullable=False)
    signed = Column(Boolean, default=False, nullable=False)
    signed_at = Column(DateTime, nullable=True)
    otp_verified = Column(Boolean, default=False, nullable=False)
    otp_verified_at = Column(DateTime, nullable=True)
    active_token_id = Column(String(36), ForeignKey("action_tokens.id"), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
