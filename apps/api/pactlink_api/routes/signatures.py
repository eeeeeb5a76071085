"""Internal signature routes: request signing links and read signing state."""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from pactlink_api.auth.api_key import require_internal_actor
from pactlink_api.models import SignerRole
from pactlink_api.routes.deps import get_workflow
from pactlink_api.signatures.workflow import ContractStatus, SignatureWorkflow

router = APIRouter(prefix="/signatures", tags=["signatures"])


class SignatureResponse(BaseModel):
    """Signature slot state."""

    deal_id: str
    signer_role: str
    signer_name: Optional[str] = None
    signer_email: Optional[str] = None
    status: str
    signed: bool
    signed_at: Optional[datetime] = None
    otp_verified: bool
    otp_verified_at: Optional[datetime] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class SignatureRequestBody(BaseModel):
    """Signature request."""

    signer_email: Optional[str] = None
    signer_name: Optional[str] = None
    ttl_seconds: Optional[int] = Field(default=None, gt=0)


class SignatureRequestResponse(BaseModel):
    token_id: str
    secret: str
    link: str
    expires_at: datetime
    signature: SignatureResponse


class DealSignaturesResponse(BaseModel):
    deal_id: str
    status: ContractStatus
    signatures: list[SignatureResponse]


@router.post(
    "/{deal_id}/{role}/request",
    response_model=SignatureRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_signature(
    deal_id: str,
    role: SignerRole,
    body: SignatureRequestBody,
    actor: str = Depends(require_internal_actor),
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    """Issue a fresh signing link for one party of a deal."""
    ttl = timedelta(seconds=body.ttl_seconds) if body.ttl_seconds else None
    issued = workflow.request_signature(
        deal_id,
        role,
        actor,
        signer_email=body.signer_email,
        signer_name=body.signer_name,
        ttl=ttl,
    )
    return SignatureRequestResponse(
        token_id=issued.token.id,
        secret=issued.secret,
        link=issued.link,
        expires_at=issued.token.expires_at,
        signature=SignatureResponse.model_validate(workflow.get_signature(deal_id, role)),
    )


@router.get("/{deal_id}", response_model=DealSignaturesResponse)
async def get_deal_signatures(
    deal_id: str,
    actor: str = Depends(require_internal_actor),
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    """Signature slots for a deal and the derived contract status."""
    return DealSignaturesResponse(
        deal_id=deal_id,
        status=workflow.contract_status(deal_id),
        signatures=[SignatureResponse.model_validate(s) for s in workflow.list_signatures(deal_id)],
    )
