"""Internal API key authentication with prefix+digest lookup."""

import hashlib
import hmac
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from pactlink_api.db.session import get_db
from pactlink_api.models import InternalAPIKey
from pactlink_api.providers import utcnow
from pactlink_api.settings import get_settings

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)

API_KEY_PREFIX = "pl_"


def compute_key_prefix(raw_key: str) -> str:
    """Compute prefix (first 12 chars) of API key."""
    return raw_key[:12] if len(raw_key) >= 12 else raw_key


def compute_key_digest(raw_key: str) -> str:
    """Compute HMAC-SHA256 digest of API key."""
    secret = get_settings().secret_key.encode()
    return hmac.new(secret, raw_key.encode(), hashlib.sha256).hexdigest()


def generate_api_key(db: Session, actor_id: str, label: Optional[str] = None) -> tuple[InternalAPIKey, str]:
    """Create a key for an internal actor. The raw key is returned once."""
    raw_key = API_KEY_PREFIX + secrets.token_urlsafe(32)
    api_key = InternalAPIKey(
        actor_id=actor_id,
        label=label,
        prefix=compute_key_prefix(raw_key),
        digest=compute_key_digest(raw_key),
        is_active=True,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key, raw_key


def get_actor_by_api_key(db: Session, api_key: str) -> Optional[InternalAPIKey]:
    """Resolve an API key to its active record."""
    if not api_key or len(api_key) < 12:
        return None

    prefix = compute_key_prefix(api_key)
    digest = compute_key_digest(api_key)

    candidates = (
        db.query(InternalAPIKey)
        .filter(
            InternalAPIKey.prefix == prefix,
            InternalAPIKey.is_active == True,  # noqa: E712
            InternalAPIKey.revoked_at.is_(None),
        )
        .all()
    )

    for candidate in candidates:
        # Constant-time comparison of digest
        if hmac.compare_digest(candidate.digest, digest):
            candidate.last_used_at = utcnow()
            db.commit()
            return candidate

    return None


async def require_internal_actor(
    x_api_key: Optional[str] = Security(api_key_header),
    db: Session = Depends(get_db),
) -> str:
    """Authenticate an internal caller and return its actor id."""
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide x-api-key header.",
        )

    api_key = get_actor_by_api_key(db, x_api_key)
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked API key.",
        )

    return api_key.actor_id
