"""Read-only audit trail routes."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pactlink_api.audit.log import AuditLog
from pactlink_api.auth.api_key import require_internal_actor
from pactlink_api.routes.deps import get_audit_log

router = APIRouter(prefix="/audit", tags=["audit"])


class AuditEntryResponse(BaseModel):
    """Audit entry."""

    id: int
    subject_id: Optional[str] = None
    event_type: str
    actor_hint: Optional[str] = None
    timestamp: datetime
    detail: dict[str, Any]
    correlation_id: Optional[str] = None
    event_hash: str
    previous_event_hash: Optional[str] = None

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    subject_id: str
    entries: list[AuditEntryResponse]
    chain_valid: Optional[bool] = None
    chain_error: Optional[str] = None


@router.get("/{subject_id}", response_model=AuditTrailResponse)
async def get_audit_trail(
    subject_id: str,
    verify: bool = False,
    actor: str = Depends(require_internal_actor),
    audit: AuditLog = Depends(get_audit_log),
):
    """Audit entries for a subject, optionally with hash chain verification."""
    response = AuditTrailResponse(
        subject_id=subject_id,
        entries=[AuditEntryResponse.model_validate(e) for e in audit.query(subject_id)],
    )
    if verify:
        response.chain_valid, response.chain_error = audit.verify_chain(subject_id)
    return response
