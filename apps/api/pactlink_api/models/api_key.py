"""Internal API key model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from pactlink_api.db.base import Base
from pactlink_api.providers import utcnow


class InternalAPIKey(Base):
    """API key for internal actors (dashboard backend, scheduler)."""

    __tablename__ = "internal_api_keys"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(255), nullable=False, index=True)
    label = Column(String(255), nullable=True)
    prefix = Column(String(16), nullable=False, index=True)
    digest = Column(String(64), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
