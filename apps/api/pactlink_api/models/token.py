"""Action token and OTP challenge models."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from pactlink_api.db.base import Base
from pactlink_api.providers import utcnow


def _gen_uuid() -> str:
    return str(uuid.uuid4())


class TokenPurpose(str, Enum):
    """What an action token authorizes its bearer to do."""

    VIEW_CONTRACT = "view_contract"
    BRAND_REPLY = "brand_reply"
    SHIPPING_UPDATE = "shipping_update"
    DEAL_DETAILS = "deal_details"
    SIGN_CONTRACT = "sign_contract"


class ActionToken(Base):
    """One grant of permission to an unauthenticated party.

    Only the HMAC digest of the secret is stored; the plaintext exists once,
    in the response to the issuing call and in the recipient's inbox.
    """

    __tablename__ = "action_tokens"

    id = Column(String(36), primary_key=True, default=_gen_uuid)
    secret_digest = Column(String(64), nullable=False, unique=True, index=True)
    purpose = Column(String(50), nullable=False, index=True)
    subject_id = Column(String(255), nullable=False, index=True)
    signer_role = Column(String(20), nullable=True)  # creator, brand (sign_contract only)
    recipient_hint = Column(String(255), nullable=True)  # audit only
    issued_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String(255), nullable=True)
    expired_at = Column(DateTime, nullable=True)  # reporting marker set by the sweep

    # Relationships
    otp_challenge = relationship("OTPChallenge", back_populates="token", uselist=False)

    def is_usable(self, now: datetime) -> bool:
        """A token is usable iff it is unused, unrevoked and unexpired."""
        return not self.used and not self.revoked and now < self.expires_at


class OTPChallenge(Base):
    """Step-up verification bound 1:1 to an action token."""

    __tablename__ = "otp_challenges"

    id = Column(Integer, primary_key=True, index=True)
    token_id = Column(String(36), ForeignKey("action_tokens.id"), nullable=False, unique=True, index=True)
    code_hash = Column(String(64), nullable=False)
    salt = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    # Relationships
    token = relationship("ActionToken", back_populates="otp_challenge")

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)
