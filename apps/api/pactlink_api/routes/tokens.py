"""Action token routes.

``POST /tokens`` and ``DELETE /tokens/{id}`` are internal. Everything
addressed by a secret is public: the secret itself is the credential.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from pactlink_api.auth.api_key import require_internal_actor
from pactlink_api.errors import InvalidTokenRequest, TokenNotFound, TokenRevoked
from pactlink_api.models import ActionToken, SignerRole, TokenPurpose
from pactlink_api.otp.service import OTPService
from pactlink_api.routes.deps import get_otp_service, get_token_store, get_workflow
from pactlink_api.routes.signatures import SignatureResponse
from pactlink_api.signatures.workflow import SignatureWorkflow
from pactlink_api.tokens.purposes import policy_for
from pactlink_api.tokens.store import TokenStore

router = APIRouter(prefix="/tokens", tags=["tokens"])


class TokenCreate(BaseModel):
    """Token issuance request."""

    purpose: TokenPurpose
    subject_id: str = Field(min_length=1, max_length=255)
    ttl_seconds: Optional[int] = Field(default=None, gt=0)
    recipient_hint: Optional[str] = None
    signer_role: Optional[SignerRole] = None


class TokenIssuedResponse(BaseModel):
    id: str
    secret: str
    link: str
    purpose: TokenPurpose
    expires_at: datetime


class TokenSummary(BaseModel):
    """What a link grants, as shown to its bearer."""

    purpose: TokenPurpose
    subject_id: str
    expires_at: datetime
    single_use: bool
    requires_otp: bool


class ClaimRequest(BaseModel):
    purpose: TokenPurpose


class BeginVerificationResponse(BaseModel):
    token_id: str
    otp_expires_at: datetime
    max_attempts: int


class VerifyOTPRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class SignRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)
    signer_name: str = Field(min_length=1, max_length=255)


class RevokeResponse(BaseModel):
    id: str
    revoked: bool
    revoked_at: Optional[datetime] = None


def _summary(token: ActionToken) -> TokenSummary:
    policy = policy_for(token.purpose)
    return TokenSummary(
        purpose=token.purpose,
        subject_id=token.subject_id,
        expires_at=token.expires_at,
        single_use=policy.single_use,
        requires_otp=policy.requires_otp,
    )


def _signing_token(store: TokenStore, secret: str) -> ActionToken:
    token = store.get_by_secret(secret)
    if token.purpose != TokenPurpose.SIGN_CONTRACT.value:
        raise TokenNotFound()
    if token.revoked:
        raise TokenRevoked()
    return token


@router.post("", response_model=TokenIssuedResponse, status_code=status.HTTP_201_CREATED)
async def issue_token(
    body: TokenCreate,
    actor: str = Depends(require_internal_actor),
    store: TokenStore = Depends(get_token_store),
):
    """Issue an action token. The secret appears in this response only."""
    ttl = timedelta(seconds=body.ttl_seconds) if body.ttl_seconds else None
    issued = store.issue(
        body.purpose,
        body.subject_id,
        ttl=ttl,
        recipient_hint=body.recipient_hint,
        actor=actor,
        signer_role=body.signer_role,
    )
    return TokenIssuedResponse(
        id=issued.token.id,
        secret=issued.secret,
        link=issued.link,
        purpose=issued.token.purpose,
        expires_at=issued.token.expires_at,
    )


@router.get("/{secret}", response_model=TokenSummary)
async def inspect_token(secret: str, store: TokenStore = Depends(get_token_store)):
    """Check a link without consuming it."""
    return _summary(store.inspect(secret))


@router.post("/{secret}/claim", response_model=TokenSummary)
async def claim_token(
    secret: str,
    body: ClaimRequest,
    store: TokenStore = Depends(get_token_store),
):
    """Claim a link for a purpose that needs no step-up verification."""
    if policy_for(body.purpose).requires_otp:
        raise InvalidTokenRequest("Signing links are claimed through begin-verification")
    return _summary(store.claim(secret, body.purpose))


@router.post("/{secret}/begin-verification", response_model=BeginVerificationResponse)
async def begin_verification(secret: str, workflow: SignatureWorkflow = Depends(get_workflow)):
    """Claim a signing link and send a one-time code to the signer."""
    issued = workflow.begin_verification(secret)
    return BeginVerificationResponse(
        token_id=issued.challenge.token_id,
        otp_expires_at=issued.challenge.expires_at,
        max_attempts=issued.challenge.max_attempts,
    )


@router.post("/{secret}/verify-otp")
async def verify_otp(
    secret: str,
    body: VerifyOTPRequest,
    store: TokenStore = Depends(get_token_store),
    otp_service: OTPService = Depends(get_otp_service),
):
    """Check a one-time code without signing."""
    token = _signing_token(store, secret)
    otp_service.verify(token.id, body.code)
    return {"verified": True}


@router.post("/{secret}/sign", response_model=SignatureResponse)
async def sign(
    secret: str,
    body: SignRequest,
    request: Request,
    store: TokenStore = Depends(get_token_store),
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    """Verify the one-time code and apply the signature."""
    token = _signing_token(store, secret)
    return workflow.confirm_signature(
        token.id,
        body.code,
        body.signer_name,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.delete("/{token_id}", response_model=RevokeResponse)
async def revoke_token(
    token_id: str,
    reason: Optional[str] = None,
    actor: str = Depends(require_internal_actor),
    store: TokenStore = Depends(get_token_store),
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    """Revoke a token. Repeating the call is harmless."""
    token = store.revoke(token_id, actor, reason=reason)
    workflow.handle_token_revoked(token, actor)
    return RevokeResponse(id=token.id, revoked=token.revoked, revoked_at=token.revoked_at)
