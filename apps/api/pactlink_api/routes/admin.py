"""Admin routes for audited signature resets."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from pactlink_api.auth.api_key import require_internal_actor
from pactlink_api.models import SignerRole
from pactlink_api.routes.deps import get_workflow
from pactlink_api.routes.signatures import SignatureResponse
from pactlink_api.signatures.workflow import SignatureWorkflow

router = APIRouter(prefix="/admin", tags=["admin"])


class SignatureResetRequest(BaseModel):
    """Signature reset request."""

    reason: str = Field(min_length=1, max_length=500)


@router.post("/signatures/{deal_id}/{role}/reset", response_model=SignatureResponse)
async def reset_signature(
    deal_id: str,
    role: SignerRole,
    body: SignatureResetRequest,
    actor: str = Depends(require_internal_actor),
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    """Reset a signature slot. A new signing link must be requested afterwards."""
    return workflow.reset_signature(deal_id, role, actor, reason=body.reason)
